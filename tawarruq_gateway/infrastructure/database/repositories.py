"""Data access layer for Tawarruq entities"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import update
from sqlalchemy.orm import Session

from tawarruq_gateway.domain.models import CommodityPurchase, CommoditySale, CommodityType
from tawarruq_gateway.domain.status import FinancingStatus
from tawarruq_gateway.infrastructure.database.models import (
    PROFIT_RATE,
    FinancingApplication,
    TawarruqTransaction,
    ValidationRecord,
)
from tawarruq_gateway.utils.clock import ensure_utc, utcnow

T1_PURCHASE = "T1_PURCHASE"
T2_SALE = "T2_SALE"


def generate_application_number(now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    return f"TWR-{now:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


class ApplicationRepository:
    """Repository for financing applications"""

    def __init__(self, db: Session):
        self.db = db

    def create_application(
        self,
        customer_id: str,
        principal_amount: Decimal,
        tenure_months: int,
        product_type: str = "personal_financing_i",
        applicant_name: Optional[str] = None,
        status: FinancingStatus = FinancingStatus.SUBMITTED,
    ) -> FinancingApplication:
        """Persist a new application (normally done by the applicant-side workflow)"""
        if principal_amount <= 0:
            raise ValueError("principal amount must be positive")
        if tenure_months <= 0:
            raise ValueError("tenure must be a positive number of months")

        application = FinancingApplication(
            application_number=generate_application_number(),
            customer_id=customer_id,
            applicant_name=applicant_name,
            product_type=product_type,
            principal_amount=principal_amount,
            profit_rate=PROFIT_RATE,
            tenure_months=tenure_months,
            status=status.value,
        )
        self.db.add(application)
        self.db.flush()
        return application

    def get_application(self, application_id: uuid.UUID) -> Optional[FinancingApplication]:
        return (
            self.db.query(FinancingApplication)
            .filter(FinancingApplication.id == application_id)
            .first()
        )

    def compare_and_set_status(
        self,
        application_id: uuid.UUID,
        expected: Iterable[FinancingStatus],
        new_status: FinancingStatus,
        blocked_reason: Optional[str] = None,
        clear_blocked_reason: bool = False,
    ) -> bool:
        """
        Move the application to `new_status` only if it is still in one of
        the `expected` statuses. Returns False when another writer got there first.
        """
        values: Dict[str, Any] = {"status": new_status.value, "updated_at": utcnow()}
        if blocked_reason is not None:
            values["blocked_reason"] = blocked_reason
        elif clear_blocked_reason:
            values["blocked_reason"] = None

        result = self.db.execute(
            update(FinancingApplication)
            .where(FinancingApplication.id == application_id)
            .where(FinancingApplication.status.in_([s.value for s in expected]))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class TransactionRepository:
    """Repository for T1/T2 trade records"""

    def __init__(self, db: Session):
        self.db = db

    def create_transaction(
        self,
        financing_id: uuid.UUID,
        trade: Union[CommodityPurchase, CommoditySale],
    ) -> TawarruqTransaction:
        """Persist one leg; T1 gets sequence 1, T2 sequence 2"""
        is_purchase = isinstance(trade, CommodityPurchase)
        db_transaction = TawarruqTransaction(
            financing_id=financing_id,
            transaction_type=T1_PURCHASE if is_purchase else T2_SALE,
            commodity_id=trade.commodity_id,
            commodity_type=trade.commodity_type.value,
            quantity=trade.quantity,
            unit_price=trade.unit_price,
            total_amount=trade.total_amount,
            venue_reference=trade.venue_reference,
            certificate_number=trade.certificate_number,
            seller=trade.seller,
            buyer=trade.buyer,
            executed_at=trade.timestamp,
            sequence_number=1 if is_purchase else 2,
            status="validated",
        )
        self.db.add(db_transaction)
        self.db.flush()
        return db_transaction

    def get_leg(self, financing_id: uuid.UUID, transaction_type: str) -> Optional[TawarruqTransaction]:
        return (
            self.db.query(TawarruqTransaction)
            .filter(
                TawarruqTransaction.financing_id == financing_id,
                TawarruqTransaction.transaction_type == transaction_type,
            )
            .first()
        )

    def get_transactions(self, financing_id: uuid.UUID) -> List[TawarruqTransaction]:
        return (
            self.db.query(TawarruqTransaction)
            .filter(TawarruqTransaction.financing_id == financing_id)
            .order_by(TawarruqTransaction.sequence_number)
            .all()
        )


class ValidationRepository:
    """Repository for append-only validation history"""

    def __init__(self, db: Session):
        self.db = db

    def create_record(
        self,
        financing_id: uuid.UUID,
        validation_type: str,
        result: str,
        details: Dict[str, Any],
        validator_version: str,
        validated_at: Optional[datetime] = None,
    ) -> ValidationRecord:
        record = ValidationRecord(
            financing_id=financing_id,
            validation_type=validation_type,
            result=result,
            details=details,
            validator_version=validator_version,
            validated_at=validated_at or utcnow(),
        )
        self.db.add(record)
        self.db.flush()
        return record

    def get_records(self, financing_id: uuid.UUID) -> List[ValidationRecord]:
        return (
            self.db.query(ValidationRecord)
            .filter(ValidationRecord.financing_id == financing_id)
            .order_by(ValidationRecord.validated_at)
            .all()
        )


def purchase_from_record(record: TawarruqTransaction) -> CommodityPurchase:
    """Rebuild the immutable T1 record from its persisted row"""
    return CommodityPurchase(
        commodity_id=record.commodity_id,
        commodity_type=CommodityType(record.commodity_type),
        quantity=Decimal(record.quantity),
        unit_price=Decimal(record.unit_price),
        total_amount=Decimal(record.total_amount),
        venue_reference=record.venue_reference,
        timestamp=ensure_utc(record.executed_at),
        seller=record.seller,
        buyer=record.buyer,
        certificate_number=record.certificate_number,
    )
