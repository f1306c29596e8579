"""FastAPI dependency injection for the report service, settings and caller identity."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request
from pydantic import ValidationError as PydanticValidationError
from report_engine.config import Settings
from report_engine.models.job import RequestContext
from report_engine.registry.defaults import build_default_registry
from report_engine.registry.registry import CatalogRegistry
from report_engine.service import ReportService
from report_engine.state.database import get_engine, get_session_factory
from sqlalchemy.ext.asyncio import AsyncEngine

from api.config import APISettings, load_api_settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_settings_cache: APISettings | None = None


def get_settings() -> APISettings:
    """Return the cached :class:`APISettings` singleton."""
    global _settings_cache  # noqa: PLW0603
    if _settings_cache is None:
        _settings_cache = load_api_settings()
    return _settings_cache


SettingsDep = Annotated[APISettings, Depends(get_settings)]

# ---------------------------------------------------------------------------
# Report service
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_service: ReportService | None = None


def init_service(settings: Settings, registry: CatalogRegistry | None = None) -> ReportService:
    """Create the database engine and the global :class:`ReportService`."""
    global _engine, _service  # noqa: PLW0603
    _engine = get_engine(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    _service = ReportService(
        get_session_factory(_engine),
        registry or build_default_registry(settings),
        settings,
    )
    return _service


def get_db_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_service() is called during application startup."
        )
    return _engine


async def dispose_service() -> None:
    """Stop background jobs and dispose the engine pool (call during shutdown).

    Jobs interrupted here stay in their running stage; the next startup
    reaps and refunds them.
    """
    global _engine, _service  # noqa: PLW0603
    if _service is not None:
        await _service.aclose(cancel=True)
        _service = None
    if _engine is not None:
        await _engine.dispose()
        _engine = None


def get_service() -> ReportService:
    """Return the global report service."""
    if _service is None:
        raise RuntimeError(
            "Report service has not been initialised. Ensure init_service() is called during application startup."
        )
    return _service


ServiceDep = Annotated[ReportService, Depends(get_service)]

# ---------------------------------------------------------------------------
# Caller identity
# ---------------------------------------------------------------------------


async def get_request_context(
    request: Request,
    x_account_id: Annotated[str | None, Header()] = None,
    x_requester_id: Annotated[str | None, Header()] = None,
    x_organization_id: Annotated[str | None, Header()] = None,
) -> RequestContext:
    """Build the caller's :class:`RequestContext` from gateway headers.

    Authentication happens upstream; the gateway forwards the verified
    identity in ``X-Account-ID``, ``X-Requester-ID`` (defaults to the
    account) and the optional ``X-Organization-ID``.
    """
    if not x_account_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        context = RequestContext(
            account_id=x_account_id,
            requester_id=x_requester_id or x_account_id,
            organization_id=x_organization_id or None,
        )
    except PydanticValidationError:
        raise HTTPException(status_code=401, detail="Invalid identity headers")
    request.state.account_id = context.account_id
    return context


ContextDep = Annotated[RequestContext, Depends(get_request_context)]
