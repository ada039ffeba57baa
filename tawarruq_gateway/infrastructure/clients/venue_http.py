"""Commodity venue HTTP client for executing T1/T2 trades against a remote venue"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from tawarruq_gateway.domain.exceptions import VenueError, VenueRejectionError, VenueTimeoutError
from tawarruq_gateway.domain.models import CertificateVerification, CommodityPurchase, CommoditySale
from tawarruq_gateway.infrastructure.clients.venue import VenueClient
from tawarruq_gateway.infrastructure.observability.metrics import (
    venue_failures_counter,
    venue_latency_histogram,
)

# Venue answers these when it refuses an order (e.g. insufficient liquidity)
REJECTION_STATUS_CODES = {409, 422}


class HttpVenueClient(VenueClient):
    """Client for an external commodity venue API"""

    def __init__(
        self,
        base_url: str,
        timeout: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def _request(self, operation: str, method: str, path: str, **kwargs) -> Dict[str, Any]:
        """
        Issue one request and return the decoded JSON body.

        Raises:
            VenueTimeoutError: On timeout
            VenueRejectionError: When the venue refuses the order
            VenueError: On other HTTP errors, network failures or a non-JSON body
        """
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self.transport
        ) as client:
            try:
                with venue_latency_histogram.labels(operation=operation).time():
                    response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                return response.json()

            except httpx.TimeoutException as e:
                venue_failures_counter.labels(operation=operation, kind="timeout").inc()
                raise VenueTimeoutError(f"Venue {operation} timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status in REJECTION_STATUS_CODES:
                    venue_failures_counter.labels(operation=operation, kind="rejected").inc()
                    raise VenueRejectionError(
                        f"Venue rejected {operation}: {_error_detail(e.response)}"
                    ) from e
                venue_failures_counter.labels(operation=operation, kind="http_error").inc()
                raise VenueError(f"Venue API error: {status}") from e
            except httpx.RequestError as e:
                venue_failures_counter.labels(operation=operation, kind="network").inc()
                raise VenueError(f"Venue unreachable: {e}") from e
            except ValueError as e:
                venue_failures_counter.labels(operation=operation, kind="malformed").inc()
                raise VenueError(f"Invalid JSON from venue {operation}") from e

    async def purchase(self, principal_amount: Decimal, buyer: str) -> CommodityPurchase:
        data = await self._request(
            "purchase",
            "POST",
            "/venue/purchase",
            json={"principal_amount": str(principal_amount), "buyer": buyer},
        )
        try:
            return CommodityPurchase.from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            raise VenueError(f"Invalid purchase data from venue: {e}") from e

    async def sell(self, purchase: CommodityPurchase, seller: str) -> CommoditySale:
        data = await self._request(
            "sell",
            "POST",
            "/venue/sell",
            json={"purchase": purchase.to_dict(), "seller": seller},
        )
        try:
            return CommoditySale.from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            raise VenueError(f"Invalid sale data from venue: {e}") from e

    async def verify_certificate(self, certificate_number: str) -> CertificateVerification:
        data = await self._request(
            "verify_certificate", "GET", f"/venue/certificates/{certificate_number}"
        )
        try:
            return CertificateVerification(
                valid=bool(data["valid"]),
                issuer=data["issuer"],
                issued_at=datetime.fromisoformat(data["issued_at"]),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise VenueError(f"Invalid certificate data from venue: {e}") from e


def _error_detail(response: httpx.Response) -> str:
    try:
        return str(response.json().get("detail", response.text))
    except ValueError:
        return response.text
