"""FastAPI application entry-point for the report API."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from report_engine.config import load_settings
from report_engine.errors import (
    AccessDeniedError,
    DuplicateRegistrationError,
    EngineError,
    InsufficientCreditError,
    JobStateError,
    LedgerConsistencyError,
    MissingSubjectBindingError,
    NotFoundError,
    RendererError,
    ReportEngineError,
    ValidationError,
)
from report_engine.state.database import create_tables
from sqlalchemy.exc import SQLAlchemyError

from api import __version__
from api.config import APISettings, PlatformEnv, load_api_settings
from api.dependencies import dispose_service, get_db_engine, init_service
from api.middleware.json_formatter import configure_json_logging
from api.middleware.logging import RequestLoggingMiddleware, safe_path
from api.routers import catalog, credits, health, reports, shares
from api.schemas import ErrorResponse

logger = logging.getLogger(__name__)

# Most specific class first; the first isinstance match wins.
_STATUS_BY_ERROR: tuple[tuple[type[ReportEngineError], int], ...] = (
    (MissingSubjectBindingError, 422),
    (ValidationError, 422),
    (InsufficientCreditError, 402),
    (NotFoundError, 404),
    (AccessDeniedError, 403),
    (JobStateError, 409),
    (DuplicateRegistrationError, 409),
    (EngineError, 503),
    (RendererError, 502),
    (LedgerConsistencyError, 500),
)


def status_for(exc: ReportEngineError) -> int:
    """Return the HTTP status code for a domain error."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


def error_body(exc: ReportEngineError) -> dict[str, object]:
    body = ErrorResponse(
        detail=str(exc),
        error=type(exc).__name__,
        job_id=exc.job_id,
        reason=getattr(exc, "reason", None),
        required=getattr(exc, "required", None),
        available=getattr(exc, "available", None),
    )
    return body.model_dump(exclude_none=True)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup / shutdown lifecycle.

    On startup:
    - Build the report service (database engine, catalog, pipeline).
    - Create tables in dev or for SQLite databases (idempotent).
    - Fail and refund jobs a previous process left running.

    On shutdown:
    - Cancel in-flight jobs and dispose the connection pool.
    """
    settings: APISettings = load_api_settings()
    report_settings = load_settings()

    if settings.structured_logging or report_settings.structured_logging:
        configure_json_logging()
        logger.info("Structured JSON logging enabled")

    service = init_service(report_settings)
    is_local = report_settings.database_url.startswith("sqlite")
    logger.info(
        "Report service initialised (%s, %d engine(s), %d renderer(s))",
        "local" if is_local else "postgres",
        len(service.registry.latest_engines()),
        len(service.registry.latest_renderers()),
    )

    if settings.platform_env == PlatformEnv.DEV or is_local:
        await create_tables(get_db_engine())
        logger.info("Database tables ensured (%s)", "local SQLite" if is_local else "dev auto-migration")

    if settings.reap_stale_jobs_on_startup:
        reaped = await service.reap_stale_jobs()
        if reaped:
            logger.warning("Reaped %d stale job(s) on startup", len(reaped))

    yield

    await dispose_service()
    logger.info("Application shutdown complete")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Construct and configure the FastAPI application."""
    settings = load_api_settings()

    app = FastAPI(
        title="Linkband Reports API",
        description="Credit-metered AI report generation and sharing.",
        version=__version__,
        lifespan=lifespan,
    )

    # -- Middleware (outermost first) ----------------------------------------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "X-Correlation-ID",
            "X-Account-ID",
            "X-Requester-ID",
            "X-Organization-ID",
            "Accept",
        ],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # -- Routers -------------------------------------------------------------

    app.include_router(health.router)
    app.include_router(catalog.router)
    app.include_router(reports.router)
    app.include_router(shares.router)
    app.include_router(credits.router)

    # -- Exception handlers --------------------------------------------------

    @app.exception_handler(ReportEngineError)
    async def report_error_handler(request: Request, exc: ReportEngineError) -> JSONResponse:
        status_code = status_for(exc)
        if isinstance(exc, LedgerConsistencyError):
            # Already logged at CRITICAL by the ledger.
            return JSONResponse(
                status_code=status_code,
                content={"detail": "Internal ledger error", "error": type(exc).__name__},
            )
        if status_code >= 500:
            logger.error("%s on %s: %s", type(exc).__name__, safe_path(request.url.path), exc)
        elif not isinstance(exc, AccessDeniedError):
            # Share denials are logged by the share link service without the token.
            logger.warning("%s on %s: %s", type(exc).__name__, safe_path(request.url.path), exc)
        return JSONResponse(status_code=status_code, content=error_body(exc))

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database error: %s", exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal database error"},
        )

    return app


# Module-level application instance used by ``uvicorn api.main:app``.
app = create_app()
