"""Dependency injection for FastAPI endpoints"""

from fastapi import Depends, Request
from sqlalchemy.orm import sessionmaker

from tawarruq_gateway.config import settings
from tawarruq_gateway.infrastructure.clients.factory import build_venue_client
from tawarruq_gateway.infrastructure.clients.venue import VenueClient
from tawarruq_gateway.infrastructure.database.session import get_session_factory
from tawarruq_gateway.services.orchestrator import TawarruqOrchestrator


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_venue_client() -> VenueClient:
    """Provide commodity venue client instance"""
    return build_venue_client(settings)


def get_orchestrator(
    session_factory: sessionmaker = Depends(get_session_factory),
    venue_client: VenueClient = Depends(get_venue_client),
) -> TawarruqOrchestrator:
    """Provide orchestrator wired with explicit configuration"""
    return TawarruqOrchestrator(
        session_factory=session_factory,
        venue_client=venue_client,
        config=settings,
    )
