"""Commodity venue clients: the interface the orchestrator depends on plus an in-process simulation"""

import abc
import asyncio
import random
import secrets
import string
import time
from decimal import Decimal
from typing import Optional

from tawarruq_gateway.domain.commodities import (
    calculate_quantity,
    discounted_sale_price,
    draw_unit_price,
    sale_total,
    select_commodity_type,
)
from tawarruq_gateway.domain.models import CertificateVerification, CommodityPurchase, CommoditySale
from tawarruq_gateway.utils.clock import MonotonicClock

VENUE_NAME = "BSAS Trading Platform"
CERTIFICATE_ISSUER = "Bursa Suq Al-Sila Malaysia"
DEFAULT_THIRD_PARTY_BUYER = "Third Party Broker"

_ID_ALPHABET = string.digits + string.ascii_uppercase


class VenueClient(abc.ABC):
    """Contract for executing the two legs of a Tawarruq trade"""

    @abc.abstractmethod
    async def purchase(self, principal_amount: Decimal, buyer: str) -> CommodityPurchase:
        """T1: buy a lot worth `principal_amount` on behalf of `buyer`"""

    @abc.abstractmethod
    async def sell(self, purchase: CommodityPurchase, seller: str) -> CommoditySale:
        """T2: resell the purchased lot; the sale is always timestamped after the purchase"""

    @abc.abstractmethod
    async def verify_certificate(self, certificate_number: str) -> CertificateVerification:
        """Look up a venue certificate"""


def _base36(value: int) -> str:
    digits = ""
    while value:
        value, rem = divmod(value, 36)
        digits = _ID_ALPHABET[rem] + digits
    return digits or "0"


class SimulatedVenueClient(VenueClient):
    """
    In-process venue that always fills.

    Randomness (commodity choice, price draw, identifiers) comes from the
    injected `rng`, so a seeded generator yields reproducible trades.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        clock: Optional[MonotonicClock] = None,
        latency_seconds: float = 0.0,
        third_party_buyer: str = DEFAULT_THIRD_PARTY_BUYER,
    ):
        self.rng = rng or random.Random(secrets.randbits(64))
        self.clock = clock or MonotonicClock()
        self.latency_seconds = latency_seconds
        self.third_party_buyer = third_party_buyer

    def _generate_id(self, prefix: str) -> str:
        stamp = _base36(int(time.time() * 1000))
        suffix = "".join(self.rng.choice(_ID_ALPHABET) for _ in range(4))
        return f"{prefix}-{stamp}-{suffix}"

    async def _simulate_latency(self) -> None:
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)

    async def purchase(self, principal_amount: Decimal, buyer: str) -> CommodityPurchase:
        if principal_amount <= 0:
            raise ValueError("principal amount must be positive")

        await self._simulate_latency()

        commodity_type = select_commodity_type(self.rng)
        unit_price = draw_unit_price(commodity_type, self.rng)

        return CommodityPurchase(
            commodity_id=self._generate_id("COM"),
            commodity_type=commodity_type,
            quantity=calculate_quantity(principal_amount, unit_price),
            unit_price=unit_price,
            total_amount=principal_amount,  # contract total is the principal, not qty x price
            venue_reference=self._generate_id("BSAS"),
            timestamp=self.clock.now(),
            seller=VENUE_NAME,
            buyer=buyer,
            certificate_number=self._generate_id("CERT"),
        )

    async def sell(self, purchase: CommodityPurchase, seller: str) -> CommoditySale:
        await self._simulate_latency()

        unit_price = discounted_sale_price(purchase.unit_price)

        return CommoditySale(
            commodity_id=purchase.commodity_id,
            commodity_type=purchase.commodity_type,
            quantity=purchase.quantity,
            unit_price=unit_price,
            total_amount=sale_total(purchase.quantity, unit_price),
            venue_reference=self._generate_id("BSAS"),
            timestamp=self.clock.after(purchase.timestamp),
            seller=seller,
            buyer=self.third_party_buyer,
            certificate_number=self._generate_id("CERT"),
        )

    async def verify_certificate(self, certificate_number: str) -> CertificateVerification:
        await self._simulate_latency()
        return CertificateVerification(
            valid=True,
            issuer=CERTIFICATE_ISSUER,
            issued_at=self.clock.now(),
        )
