"""Commodity pricing rules for venue trades"""

import random
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Tuple

from tawarruq_gateway.domain.models import CommodityType

QUANTITY_PRECISION = Decimal("0.001")  # metric tonnes
MONEY_PRECISION = Decimal("0.01")

# Market price bands in MYR per metric tonne
PRICE_BANDS: Dict[CommodityType, Tuple[Decimal, Decimal]] = {
    CommodityType.CPO: (Decimal("3800"), Decimal("4200")),
    CommodityType.PLASTIC_RESIN: (Decimal("4500"), Decimal("5000")),
    CommodityType.RBD_PALM_OLEIN: (Decimal("4000"), Decimal("4400")),
}

# T2 is priced slightly under T1: the customer realises cash at market
SALE_DISCOUNT = Decimal("0.002")


def select_commodity_type(rng: random.Random) -> CommodityType:
    return rng.choice(list(CommodityType))


def draw_unit_price(commodity_type: CommodityType, rng: random.Random) -> Decimal:
    """Uniform draw from the commodity's price band, rounded to sen"""
    low, high = PRICE_BANDS[commodity_type]
    price = rng.uniform(float(low), float(high))
    return Decimal(str(price)).quantize(MONEY_PRECISION, rounding=ROUND_HALF_UP)


def calculate_quantity(principal_amount: Decimal, unit_price: Decimal) -> Decimal:
    """
    Lot size needed to cover the principal.

    Example:
        100000 / 4000.00 -> 25.000 MT
    """
    if unit_price <= 0:
        raise ValueError("unit price must be positive")
    return (principal_amount / unit_price).quantize(QUANTITY_PRECISION, rounding=ROUND_HALF_UP)


def discounted_sale_price(purchase_unit_price: Decimal) -> Decimal:
    return purchase_unit_price * (Decimal("1") - SALE_DISCOUNT)


def sale_total(quantity: Decimal, sale_unit_price: Decimal) -> Decimal:
    return (quantity * sale_unit_price).quantize(MONEY_PRECISION, rounding=ROUND_HALF_UP)
