"""Pydantic schemas for API request/response validation"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from tawarruq_gateway.domain.models import ProcessingResult
from tawarruq_gateway.domain.status import AdminStatus


class ProcessingResponse(BaseModel):
    """Result of any orchestrator step; failures are data, not HTTP errors"""

    success: bool
    new_status: str
    message: str
    details: Optional[Dict[str, Any]] = None

    @classmethod
    def from_result(cls, result: ProcessingResult) -> "ProcessingResponse":
        return cls(
            success=result.success,
            new_status=result.new_status,
            message=result.message,
            details=result.details,
        )


class TransactionItem(BaseModel):
    """Single persisted trade leg"""

    transaction_id: str
    transaction_type: str
    sequence_number: int
    commodity_id: str
    commodity_type: str
    quantity: str
    unit_price: str
    total_amount: str
    venue_reference: str
    certificate_number: str
    seller: str
    buyer: str
    executed_at: str
    status: str


class TransactionsResponse(BaseModel):
    """Response for GET /v1/applications/{id}/transactions"""

    application_id: str
    transactions: List[TransactionItem]


class ValidationItem(BaseModel):
    """Single validation record"""

    validation_id: str
    validation_type: str
    result: str
    validator_version: str
    validated_at: str
    details: Dict[str, Any]


class ValidationHistoryResponse(BaseModel):
    """Response for GET /v1/applications/{id}/validations"""

    application_id: str
    status: str
    blocked_reason: Optional[str] = None
    validations: List[ValidationItem]


class AdminStatusRequest(BaseModel):
    """Request body for POST /v1/admin/applications/{id}/status"""

    status: AdminStatus
    reason: Optional[str] = Field(None, max_length=500, description="Required when rejecting")


class AdminStatusResponse(BaseModel):
    application_id: str
    status: str
    admin_status: Optional[AdminStatus] = None
    blocked_reason: Optional[str] = None
