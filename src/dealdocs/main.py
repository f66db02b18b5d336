"""FastAPI application factory.

Creates the app with logging and metrics middleware, Sentry, lifespan events
for database and collaborator initialization, and the v1 API router.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.requests import Request
from fastapi.responses import Response

from src.dealdocs.config import get_settings
from src.dealdocs.core.database import close_db, init_db
from src.dealdocs.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.dealdocs.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.dealdocs.api.v1.router import router as v1_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB and collaborators on startup, close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    # Initialize Sentry if DSN is configured
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # A broken Drive or Pipedrive configuration must not prevent startup;
    # the document endpoints answer 503 until it is fixed.
    try:
        from src.dealdocs.documents.service import build_document_service

        app.state.document_service = build_document_service(settings)
        log.info(
            "document_service.initialized",
            drive_configured=settings.drive_configured(),
            drive_disabled=settings.GOOGLE_DRIVE_DISABLED,
        )
    except Exception:
        log.warning("document_service.init_failed", exc_info=True)
        app.state.document_service = None

    yield

    service = getattr(app.state, "document_service", None)
    if service is not None:
        await service.aclose()
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Deal Documents Sync API",
        version="0.1.0",
        description="Mirrors Pipedrive deal attachments into a Google shared drive",
        lifespan=lifespan,
    )

    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
