"""Engine/renderer compatibility queries over a :class:`CatalogRegistry`.

All functions are pure with respect to the registry: they read its state
and return fresh lists in a deterministic order.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from report_engine.models.catalog import EngineDescriptor, OutputFormat, RendererDescriptor

if TYPE_CHECKING:
    from report_engine.registry.registry import CatalogRegistry


def _rank(registry: CatalogRegistry, engine_id: str, renderer: RendererDescriptor) -> tuple[int, int, str]:
    recommended = 0 if registry.is_recommended(renderer.id, engine_id) else 1
    return (recommended, renderer.cost_per_render, renderer.id)


def find_compatible(
    registry: CatalogRegistry,
    engine_id: str,
    organization_id: str | None = None,
) -> list[RendererDescriptor]:
    """Return renderers that accept *engine_id*, best first.

    A renderer qualifies when its ``compatible_engine_ids`` names the engine
    or contains the wildcard.  Each renderer id appears once, at its latest
    active version.  Ordering is recommended renderers first, then
    ``cost_per_render`` ascending, then id.

    An unknown or fully retired *engine_id* yields ``[]``.  When
    *organization_id* is given, organization-scoped renderers belonging to
    other organizations are left out.
    """
    if registry.get_engine(engine_id) is None:
        return []
    candidates = [
        r
        for r in registry.latest_renderers()
        if r.supports(engine_id) and (organization_id is None or r.available_to(organization_id))
    ]
    return sorted(candidates, key=lambda r: _rank(registry, engine_id, r))


def is_compatible(registry: CatalogRegistry, engine_id: str, renderer_id: str) -> bool:
    """Return ``True`` if both ids resolve to active entries that accept each other."""
    engine = registry.get_engine(engine_id)
    renderer = registry.get_renderer(renderer_id)
    if engine is None or renderer is None:
        return False
    return renderer.supports(engine.id)


def select_best_renderer(
    registry: CatalogRegistry,
    engine_id: str,
    output_format: OutputFormat | None = None,
    organization_id: str | None = None,
) -> RendererDescriptor | None:
    """Return the top-ranked compatible renderer, optionally of one format."""
    for renderer in find_compatible(registry, engine_id, organization_id=organization_id):
        if output_format is None or renderer.output_format == output_format:
            return renderer
    return None


def find_supported_engines(registry: CatalogRegistry, renderer_id: str) -> list[EngineDescriptor]:
    """Return the active engines *renderer_id* can render, sorted by id."""
    renderer = registry.get_renderer(renderer_id)
    if renderer is None:
        return []
    return [e for e in registry.latest_engines() if renderer.supports(e.id)]


def compatibility_matrix(registry: CatalogRegistry) -> dict[str, list[str]]:
    """Map every active engine id to its ranked compatible renderer ids."""
    return {e.id: [r.id for r in find_compatible(registry, e.id)] for e in registry.latest_engines()}


def search_engines(
    registry: CatalogRegistry,
    data_types: frozenset[str] | None = None,
    max_cost: int | None = None,
    organization_id: str | None = None,
) -> list[EngineDescriptor]:
    """Return active engines covering every channel in *data_types* within *max_cost*.

    Only engines available to *organization_id* are returned; without an
    organization that means public engines.  Results are ordered by cost,
    then id.
    """
    wanted = {getattr(t, "value", t) for t in data_types} if data_types else set()
    matches = []
    for engine in registry.latest_engines():
        if not engine.available_to(organization_id):
            continue
        supported = {t.value for t in engine.supported_data_types}
        if not wanted <= supported:
            continue
        if max_cost is not None and engine.cost_per_analysis > max_cost:
            continue
        matches.append(engine)
    return sorted(matches, key=lambda e: (e.cost_per_analysis, e.id))
