"""GET /v1/applications/{id}/transactions|validations - Append-only Tawarruq history"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from tawarruq_gateway.api.v1.processing import parse_application_id
from tawarruq_gateway.api.v1.schemas import (
    TransactionItem,
    TransactionsResponse,
    ValidationHistoryResponse,
    ValidationItem,
)
from tawarruq_gateway.infrastructure.database.repositories import (
    ApplicationRepository,
    TransactionRepository,
    ValidationRepository,
)
from tawarruq_gateway.infrastructure.database.session import get_db
from tawarruq_gateway.utils.clock import ensure_utc

router = APIRouter()


@router.get("/applications/{application_id}/transactions", response_model=TransactionsResponse)
def get_transactions(application_id: str, db: Session = Depends(get_db)):
    """
    Retrieve the persisted trade legs of an application.

    Returns:
        T1 and (once executed) T2, ordered by sequence number
    """
    app_id = parse_application_id(application_id)
    if ApplicationRepository(db).get_application(app_id) is None:
        raise HTTPException(status_code=404, detail="Application not found")

    items = [
        TransactionItem(
            transaction_id=str(t.id),
            transaction_type=t.transaction_type,
            sequence_number=t.sequence_number,
            commodity_id=t.commodity_id,
            commodity_type=t.commodity_type,
            quantity=str(t.quantity),
            unit_price=str(t.unit_price),
            total_amount=str(t.total_amount),
            venue_reference=t.venue_reference,
            certificate_number=t.certificate_number,
            seller=t.seller,
            buyer=t.buyer,
            executed_at=ensure_utc(t.executed_at).isoformat(),
            status=t.status,
        )
        for t in TransactionRepository(db).get_transactions(app_id)
    ]

    return TransactionsResponse(application_id=str(app_id), transactions=items)


@router.get("/applications/{application_id}/validations", response_model=ValidationHistoryResponse)
def get_validations(application_id: str, db: Session = Depends(get_db)):
    """Retrieve every compliance check recorded for an application"""
    app_id = parse_application_id(application_id)
    application = ApplicationRepository(db).get_application(app_id)
    if application is None:
        raise HTTPException(status_code=404, detail="Application not found")

    items = [
        ValidationItem(
            validation_id=str(v.id),
            validation_type=v.validation_type,
            result=v.result,
            validator_version=v.validator_version,
            validated_at=ensure_utc(v.validated_at).isoformat(),
            details=v.details,
        )
        for v in ValidationRepository(db).get_records(app_id)
    ]

    return ValidationHistoryResponse(
        application_id=str(app_id),
        status=application.status,
        blocked_reason=application.blocked_reason,
        validations=items,
    )
