"""Liveness and readiness probes."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from api import __version__
from api.dependencies import ServiceDep, get_db_engine

logger = logging.getLogger(__name__)

EngineDep = Annotated[AsyncEngine, Depends(get_db_engine)]

router = APIRouter(tags=["health"])


async def _db_ok(engine: AsyncEngine) -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("DB health check failed: %s", exc)
        return False
    return True


@router.get("/health")
async def health(engine: EngineDep, service: ServiceDep) -> dict[str, Any]:
    """Return service health.

    Always HTTP 200 so load-balancers see the process as alive; ``db``
    reports whether the database answered.
    """
    return {
        "status": "healthy",
        "version": __version__,
        "db": "ok" if await _db_ok(engine) else "degraded",
        "engines": len(service.registry.latest_engines()),
        "renderers": len(service.registry.latest_renderers()),
        "running_jobs": len(service.orchestrator.running_jobs),
    }


@router.get("/ready")
async def readiness_probe(engine: EngineDep) -> JSONResponse:
    """Return 200 when the database is reachable, 503 otherwise."""
    ready = await _db_ok(engine)
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "not_ready", "version": __version__},
    )
