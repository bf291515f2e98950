"""
Main FastAPI application entry point for the Chapel admin backend.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chapel.admin.audit import (
    AuditContextMiddleware,
    AuditError,
    audit_router,
    build_alert_dispatcher,
    build_identity_resolver,
)
from chapel.admin.db import check_database_health, create_all_tables_async
from chapel.admin.logging import setup_logging
from chapel.admin.rate_limiting import SensitiveOperationLimiter
from chapel.admin.settings import Settings, settings

logger = structlog.get_logger(__name__)


def audit_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render audit errors in the standard failure envelope."""
    if not isinstance(exc, AuditError):
        raise exc
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, **exc.to_dict()},
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifecycle events."""
    app_settings: Settings = app.state.settings
    setup_logging(app_settings)

    logger.info(
        "service.startup.begin",
        service=app_settings.app_name,
        version=app_settings.app_version,
        environment=app_settings.environment.value,
    )

    if app_settings.database.create_tables_on_startup:
        await create_all_tables_async()
        logger.info("database.tables.created")

    healthy = await check_database_health()
    if not healthy:
        logger.warning("service.startup.database_unavailable")
    logger.info("service.startup.complete", healthy=healthy)

    yield

    logger.info("service.shutdown.complete")


def create_application(app_settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app_settings = app_settings or settings

    app = FastAPI(
        title="Chapel Admin Services",
        description="Administrative backend: audit and compliance logging",
        version=app_settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if not app_settings.is_production else None,
        redoc_url="/redoc" if not app_settings.is_production else None,
    )
    app.state.settings = app_settings

    # Collaborators shared by all requests
    app.state.alert_dispatcher = build_alert_dispatcher(app_settings)
    app.state.identity_resolver = build_identity_resolver(app_settings)
    app.state.sensitive_limiter = SensitiveOperationLimiter.from_settings(app_settings)

    app.add_middleware(AuditContextMiddleware)

    # Configure CORS last so it wraps responses generated by upstream middleware.
    if app_settings.cors.enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=app_settings.cors.origins,
            allow_credentials=app_settings.cors.credentials,
            allow_methods=app_settings.cors.methods,
            allow_headers=app_settings.cors.headers,
        )

    app.add_exception_handler(AuditError, audit_error_handler)

    app.include_router(audit_router, prefix="/api/v1/audit")

    # Health check endpoint (public - no auth required)
    @app.get("/health")
    async def health_check() -> dict[str, Any]:
        """Health check endpoint for monitoring."""
        database_ok = await check_database_health()
        return {
            "status": "healthy" if database_ok else "degraded",
            "database": "ok" if database_ok else "unavailable",
            "version": app_settings.app_version,
            "environment": app_settings.environment.value,
        }

    return app


app = create_application()
