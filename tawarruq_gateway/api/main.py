"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from tawarruq_gateway.api.middleware import MetricsMiddleware, RequestIDMiddleware
from tawarruq_gateway.api.v1 import admin, history, processing
from tawarruq_gateway.config import settings
from tawarruq_gateway.infrastructure.observability.logging import setup_logging

# Setup structured logging
setup_logging(settings.log_level, settings.service_name)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Tawarruq Gateway",
        description="Tawarruq execution and Shariah compliance validation service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(processing.router, prefix="/v1", tags=["processing"])
    app.include_router(history.router, prefix="/v1", tags=["history"])
    app.include_router(admin.router, prefix="/v1", tags=["admin"])

    return app


app = create_app()
