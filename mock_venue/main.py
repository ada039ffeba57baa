from decimal import Decimal, InvalidOperation
import os
import random
from typing import Any, Dict

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from tawarruq_gateway.domain.models import CommodityPurchase
from tawarruq_gateway.infrastructure.clients.venue import SimulatedVenueClient

app = FastAPI(title="Mock Commodity Venue", version="1.0.0")
# Seed via env for reproducible trades in local runs
_seed = os.environ.get("MOCK_VENUE_SEED")
venue = SimulatedVenueClient(rng=random.Random(int(_seed)) if _seed else None)

# Orders above this principal are refused, to exercise the rejection path
LIQUIDITY_LIMIT = Decimal("5000000")


class PurchaseOrder(BaseModel):
    principal_amount: str
    buyer: str


class SaleOrder(BaseModel):
    purchase: Dict[str, Any]
    seller: str


@app.get("/health")
def health(): return {"status": "ok"}


@app.post("/venue/purchase")
async def purchase(order: PurchaseOrder):
    try:
        amount = Decimal(order.principal_amount)
    except InvalidOperation:
        raise HTTPException(status_code=422, detail="principal_amount is not a number")
    if not amount.is_finite() or amount <= 0:
        raise HTTPException(status_code=422, detail="principal_amount must be positive")
    if amount > LIQUIDITY_LIMIT:
        raise HTTPException(status_code=409, detail="insufficient liquidity")
    result = await venue.purchase(amount, order.buyer)
    return result.to_dict()


@app.post("/venue/sell")
async def sell(order: SaleOrder):
    try:
        lot = CommodityPurchase.from_dict(order.purchase)
    except (KeyError, ValueError, TypeError) as e:
        raise HTTPException(status_code=422, detail=f"invalid purchase record: {e}")
    result = await venue.sell(lot, order.seller)
    return result.to_dict()


@app.get("/venue/certificates/{certificate_number}")
async def verify_certificate(certificate_number: str):
    if not certificate_number.startswith("CERT-"):
        raise HTTPException(status_code=404, detail="certificate not found")
    result = await venue.verify_certificate(certificate_number)
    return {"valid": result.valid, "issuer": result.issuer, "issued_at": result.issued_at.isoformat()}
