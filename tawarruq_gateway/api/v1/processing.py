"""POST /v1/applications/{id}/... - Tawarruq processing endpoints"""

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from tawarruq_gateway.api.dependencies import get_orchestrator
from tawarruq_gateway.api.v1.schemas import ProcessingResponse
from tawarruq_gateway.infrastructure.database.repositories import ApplicationRepository
from tawarruq_gateway.infrastructure.database.session import get_db
from tawarruq_gateway.services.orchestrator import TawarruqOrchestrator

router = APIRouter()


def parse_application_id(application_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(application_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid application ID format")


def require_application(db: Session, application_id: str) -> uuid.UUID:
    app_id = parse_application_id(application_id)
    if ApplicationRepository(db).get_application(app_id) is None:
        raise HTTPException(status_code=404, detail="Application not found")
    return app_id


@router.post("/applications/{application_id}/t1", response_model=ProcessingResponse)
async def process_t1(
    application_id: str,
    db: Session = Depends(get_db),
    orchestrator: TawarruqOrchestrator = Depends(get_orchestrator),
):
    """Execute T1: bank purchases the commodity lot (submitted -> t1_validated)"""
    app_id = require_application(db, application_id)
    result = await orchestrator.process_t1(app_id)
    return ProcessingResponse.from_result(result)


@router.post("/applications/{application_id}/t2", response_model=ProcessingResponse)
async def process_t2(
    application_id: str,
    db: Session = Depends(get_db),
    orchestrator: TawarruqOrchestrator = Depends(get_orchestrator),
):
    """Execute T2 and the full Shariah check (t1_validated -> t2_validated)"""
    app_id = require_application(db, application_id)
    result = await orchestrator.process_t2(app_id)
    return ProcessingResponse.from_result(result)


@router.post("/applications/{application_id}/approve", response_model=ProcessingResponse)
async def approve(
    application_id: str,
    db: Session = Depends(get_db),
    orchestrator: TawarruqOrchestrator = Depends(get_orchestrator),
):
    """Approve an application whose T2 has cleared compliance"""
    app_id = require_application(db, application_id)
    result = await orchestrator.approve_application(app_id)
    return ProcessingResponse.from_result(result)


@router.post("/applications/{application_id}/process", response_model=ProcessingResponse)
async def process_full_flow(
    application_id: str,
    db: Session = Depends(get_db),
    orchestrator: TawarruqOrchestrator = Depends(get_orchestrator),
):
    """
    Run T1, T2 and approval in one call.

    Returns:
        The first failing step's result, or the approval result
    """
    app_id = require_application(db, application_id)
    result = await orchestrator.process_full_flow(app_id)
    return ProcessingResponse.from_result(result)
