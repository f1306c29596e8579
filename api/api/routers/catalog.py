"""Catalog endpoints: registered engines, renderers and their compatibility."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query
from report_engine.models.catalog import EngineDescriptor, RendererDescriptor, SignalType
from report_engine.registry import matcher

from api.dependencies import ContextDep, ServiceDep

router = APIRouter(prefix="/catalog", tags=["catalog"])


@router.get("/engines", response_model=list[EngineDescriptor])
async def list_engines(
    service: ServiceDep,
    context: ContextDep,
    data_type: list[SignalType] | None = Query(None, description="Required signal channels"),
    max_cost: int | None = Query(None, ge=0),
) -> list[EngineDescriptor]:
    """Return active engines visible to the caller's organization, optionally
    narrowed by channel coverage and cost.
    """
    if data_type is None and max_cost is None:
        return [e for e in service.registry.latest_engines() if e.available_to(context.organization_id)]
    return matcher.search_engines(
        service.registry,
        data_types=frozenset(data_type) if data_type else None,
        max_cost=max_cost,
        organization_id=context.organization_id,
    )


@router.get("/renderers", response_model=list[RendererDescriptor])
async def list_renderers(service: ServiceDep, context: ContextDep) -> list[RendererDescriptor]:
    """Return active renderers visible to the caller's organization."""
    return [r for r in service.registry.latest_renderers() if r.available_to(context.organization_id)]


@router.get("/engines/{engine_id}/renderers", response_model=list[RendererDescriptor])
async def list_compatible_renderers(
    engine_id: str,
    service: ServiceDep,
    context: ContextDep,
) -> list[RendererDescriptor]:
    """Return renderers compatible with *engine_id*, recommended first."""
    engine = service.registry.get_engine(engine_id)
    if engine is None or not engine.available_to(context.organization_id):
        raise HTTPException(status_code=404, detail=f"Engine {engine_id!r} not found")
    ranked = service.registry.find_compatible(engine_id, organization_id=context.organization_id)
    # Callers outside any organization see public renderers only.
    return [r for r in ranked if r.available_to(context.organization_id)]
