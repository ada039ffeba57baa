"""SQLAlchemy ORM models for financing applications, Tawarruq trades, and validation history"""

import uuid
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

PROFIT_RATE = Decimal("0.05")


class FinancingApplication(Base):
    """Financing application moving through the Tawarruq state machine"""

    __tablename__ = "financing_applications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    application_number = Column(Text, nullable=False, unique=True)
    customer_id = Column(Text, nullable=False, index=True)
    applicant_name = Column(Text, nullable=True)
    product_type = Column(Text, nullable=False)
    principal_amount = Column(Numeric(18, 2), nullable=False)  # MYR
    profit_rate = Column(Numeric(6, 4), nullable=False, default=PROFIT_RATE)
    tenure_months = Column(Integer, nullable=False)
    status = Column(Text, nullable=False, default="submitted", index=True)
    blocked_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    transactions = relationship(
        "TawarruqTransaction",
        back_populates="application",
        order_by="TawarruqTransaction.sequence_number",
    )
    validations = relationship(
        "ValidationRecord",
        back_populates="application",
        order_by="ValidationRecord.validated_at",
    )


class TawarruqTransaction(Base):
    """One leg (T1 purchase or T2 sale) of the commodity trade"""

    __tablename__ = "tawarruq_transactions"
    __table_args__ = (
        # One T1 and at most one T2 per application
        UniqueConstraint("financing_id", "transaction_type", name="uq_transaction_leg"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    financing_id = Column(
        UUID(as_uuid=True), ForeignKey("financing_applications.id"), nullable=False, index=True
    )
    transaction_type = Column(Text, nullable=False)  # T1_PURCHASE | T2_SALE
    commodity_id = Column(Text, nullable=False)
    commodity_type = Column(Text, nullable=False)
    quantity = Column(Numeric(18, 3), nullable=False)
    unit_price = Column(Numeric(18, 6), nullable=False)
    total_amount = Column(Numeric(18, 2), nullable=False)
    venue_reference = Column(Text, nullable=False)
    certificate_number = Column(Text, nullable=False)
    seller = Column(Text, nullable=False)
    buyer = Column(Text, nullable=False)
    executed_at = Column(DateTime(timezone=True), nullable=False)
    sequence_number = Column(Integer, nullable=False)
    status = Column(Text, nullable=False, default="validated")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    application = relationship("FinancingApplication", back_populates="transactions")


class ValidationRecord(Base):
    """Append-only compliance check history"""

    __tablename__ = "validation_results"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    financing_id = Column(
        UUID(as_uuid=True), ForeignKey("financing_applications.id"), nullable=False, index=True
    )
    validation_type = Column(Text, nullable=False)  # T1_VALIDATION | FULL_SHARIAH_COMPLIANCE
    result = Column(Text, nullable=False)  # pass | warning | fail
    details = Column(JSON, nullable=False)
    validator_version = Column(Text, nullable=False)
    validated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    application = relationship("FinancingApplication", back_populates="validations")
