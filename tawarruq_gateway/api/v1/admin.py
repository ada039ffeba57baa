"""POST /v1/admin/applications/{id}/status - Manual status changes from the review path"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from tawarruq_gateway.api.dependencies import get_request_id
from tawarruq_gateway.api.v1.processing import parse_application_id
from tawarruq_gateway.api.v1.schemas import AdminStatusRequest, AdminStatusResponse
from tawarruq_gateway.domain.exceptions import InvalidTransitionError
from tawarruq_gateway.domain.status import (
    AdminStatus,
    FinancingStatus,
    resolve_admin_transition,
    to_admin_status,
)
from tawarruq_gateway.infrastructure.database.repositories import (
    T1_PURCHASE,
    T2_SALE,
    ApplicationRepository,
    TransactionRepository,
)
from tawarruq_gateway.infrastructure.database.session import get_db

router = APIRouter()


@router.post("/admin/applications/{application_id}/status", response_model=AdminStatusResponse)
def update_application_status(
    application_id: str,
    request_body: AdminStatusRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Apply an admin status change after checking the admin allow-list.

    Approving is only possible once T2 has been validated; rejecting blocks
    the application; reopening a rejected application resumes it after
    its last recorded trade leg.
    """
    request_id = get_request_id(request)
    app_id = parse_application_id(application_id)
    repo = ApplicationRepository(db)

    application = repo.get_application(app_id)
    if application is None:
        raise HTTPException(status_code=404, detail="Application not found")

    current = FinancingStatus(application.status)
    transactions = TransactionRepository(db)
    try:
        new_status = resolve_admin_transition(
            current,
            request_body.status,
            has_t1=transactions.get_leg(app_id, T1_PURCHASE) is not None,
            has_t2=transactions.get_leg(app_id, T2_SALE) is not None,
        )
    except InvalidTransitionError as e:
        logging.warning(f"Refused admin transition: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=409, detail=str(e))

    if request_body.status is AdminStatus.REJECTED and not request_body.reason:
        raise HTTPException(status_code=422, detail="A reason is required to reject an application")

    changed = repo.compare_and_set_status(
        app_id,
        [current],
        new_status,
        blocked_reason=request_body.reason if new_status is FinancingStatus.BLOCKED else None,
        clear_blocked_reason=current is FinancingStatus.BLOCKED,
    )
    if not changed:
        db.rollback()
        raise HTTPException(status_code=409, detail="Application status changed concurrently")

    db.commit()
    db.refresh(application)

    logging.info(
        "Admin status change applied",
        extra={
            "request_id": request_id,
            "application_id": str(app_id),
            "from_status": current.value,
            "new_status": new_status.value,
        },
    )

    return AdminStatusResponse(
        application_id=str(app_id),
        status=application.status,
        admin_status=to_admin_status(FinancingStatus(application.status)),
        blocked_reason=application.blocked_reason,
    )
