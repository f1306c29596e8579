"""Versioned catalog of analysis engines and report renderers.

Entries are keyed by ``(id, version)``.  Lookups by bare id resolve to the
highest active version.  Registration and retirement happen at startup or
deploy time only, so the registry holds no locks.
"""

from __future__ import annotations

import logging
from typing import Generic, TypeVar

from report_engine.capabilities.base import AnalysisEngine, ReportRenderer
from report_engine.errors import DuplicateRegistrationError
from report_engine.models.catalog import WILDCARD, EngineDescriptor, RendererDescriptor
from report_engine.registry import matcher

logger = logging.getLogger(__name__)

D = TypeVar("D", EngineDescriptor, RendererDescriptor)
C = TypeVar("C", AnalysisEngine, ReportRenderer)


def _version_key(version: str) -> tuple[tuple[int, int | str], ...]:
    """Order versions numerically where possible (``1.10.0`` after ``1.9.2``)."""
    parts: list[tuple[int, int | str]] = []
    for piece in version.split("."):
        if piece.isdigit():
            parts.append((0, int(piece)))
        else:
            parts.append((1, piece))
    return tuple(parts)


class _VersionedCatalog(Generic[D, C]):
    """Per-kind storage shared by the engine and renderer sides of the registry."""

    def __init__(self, kind: str) -> None:
        self._kind = kind
        self._descriptors: dict[str, dict[str, D]] = {}
        self._capabilities: dict[tuple[str, str], C] = {}

    def add(self, descriptor: D, capability: C) -> None:
        versions = self._descriptors.setdefault(descriptor.id, {})
        if descriptor.version in versions:
            raise DuplicateRegistrationError(
                f"{self._kind} {descriptor.id!r} version {descriptor.version!r} is already registered."
            )
        versions[descriptor.version] = descriptor
        self._capabilities[(descriptor.id, descriptor.version)] = capability
        logger.debug("Registered %s %s@%s", self._kind, descriptor.id, descriptor.version)

    def retire(self, item_id: str, version: str | None) -> int:
        versions = self._descriptors.get(item_id)
        if not versions:
            raise KeyError(f"{self._kind} {item_id!r} is not registered.")
        targets = [version] if version is not None else list(versions)
        retired = 0
        for ver in targets:
            current = versions.get(ver)
            if current is None:
                raise KeyError(f"{self._kind} {item_id!r} version {ver!r} is not registered.")
            if current.active:
                versions[ver] = current.model_copy(update={"active": False})
                retired += 1
                logger.info("Retired %s %s@%s", self._kind, item_id, ver)
        return retired

    def get(self, item_id: str, version: str | None = None) -> D | None:
        versions = self._descriptors.get(item_id)
        if not versions:
            return None
        if version is not None:
            return versions.get(version)
        active = [d for d in versions.values() if d.active]
        if not active:
            return None
        return max(active, key=lambda d: _version_key(d.version))

    def capability(self, item_id: str, version: str) -> C | None:
        return self._capabilities.get((item_id, version))

    def all(self, include_inactive: bool) -> list[D]:
        out: list[D] = []
        for item_id in sorted(self._descriptors):
            versions = self._descriptors[item_id]
            for ver in sorted(versions, key=_version_key):
                descriptor = versions[ver]
                if include_inactive or descriptor.active:
                    out.append(descriptor)
        return out

    def latest_active(self) -> list[D]:
        out: list[D] = []
        for item_id in sorted(self._descriptors):
            latest = self.get(item_id)
            if latest is not None:
                out.append(latest)
        return out


class CatalogRegistry:
    """Registry of engine and renderer implementations.

    The :mod:`report_engine.registry.matcher` functions answer compatibility
    questions over this state; the convenience methods below delegate to
    them.
    """

    def __init__(self) -> None:
        self._engines: _VersionedCatalog[EngineDescriptor, AnalysisEngine] = _VersionedCatalog("Engine")
        self._renderers: _VersionedCatalog[RendererDescriptor, ReportRenderer] = _VersionedCatalog("Renderer")
        # engine id (or WILDCARD for "every engine") -> curated renderer ids
        self._recommended: dict[str, set[str]] = {}

    # -- Registration -------------------------------------------------------

    def register_engine(self, engine: AnalysisEngine) -> None:
        """Register an engine implementation.

        Raises
        ------
        DuplicateRegistrationError
            If the same ``(id, version)`` is already registered.
        """
        descriptor = engine.descriptor
        self._engines.add(descriptor, engine)
        for renderer_id in descriptor.recommended_renderers:
            self._recommended.setdefault(descriptor.id, set()).add(renderer_id)

    def register_renderer(self, renderer: ReportRenderer) -> None:
        """Register a renderer implementation.

        Raises
        ------
        DuplicateRegistrationError
            If the same ``(id, version)`` is already registered.
        """
        self._renderers.add(renderer.descriptor, renderer)

    def recommend(self, renderer_id: str, engine_id: str = WILDCARD) -> None:
        """Curate *renderer_id* as recommended for *engine_id* (or for every engine)."""
        self._recommended.setdefault(engine_id, set()).add(renderer_id)

    def retire_engine(self, engine_id: str, version: str | None = None) -> int:
        """Mark one version (or every version) of an engine inactive.

        Returns the number of versions that changed state.
        """
        return self._engines.retire(engine_id, version)

    def retire_renderer(self, renderer_id: str, version: str | None = None) -> int:
        return self._renderers.retire(renderer_id, version)

    # -- Lookup -------------------------------------------------------------

    def get_engine(self, engine_id: str, version: str | None = None) -> EngineDescriptor | None:
        """Return a specific version, or the latest active one when *version* is omitted."""
        return self._engines.get(engine_id, version)

    def get_renderer(self, renderer_id: str, version: str | None = None) -> RendererDescriptor | None:
        return self._renderers.get(renderer_id, version)

    def engine_capability(self, descriptor: EngineDescriptor) -> AnalysisEngine:
        capability = self._engines.capability(descriptor.id, descriptor.version)
        if capability is None:
            raise KeyError(f"Engine {descriptor.id}@{descriptor.version} is not registered.")
        return capability

    def renderer_capability(self, descriptor: RendererDescriptor) -> ReportRenderer:
        capability = self._renderers.capability(descriptor.id, descriptor.version)
        if capability is None:
            raise KeyError(f"Renderer {descriptor.id}@{descriptor.version} is not registered.")
        return capability

    def list_engines(self, include_inactive: bool = False) -> list[EngineDescriptor]:
        """Return engine descriptors sorted by id then version."""
        return self._engines.all(include_inactive)

    def list_renderers(self, include_inactive: bool = False) -> list[RendererDescriptor]:
        """Return renderer descriptors sorted by id then version."""
        return self._renderers.all(include_inactive)

    def latest_engines(self) -> list[EngineDescriptor]:
        """Return the latest active version of every engine."""
        return self._engines.latest_active()

    def latest_renderers(self) -> list[RendererDescriptor]:
        """Return the latest active version of every renderer."""
        return self._renderers.latest_active()

    def is_recommended(self, renderer_id: str, engine_id: str) -> bool:
        return renderer_id in self._recommended.get(engine_id, set()) or renderer_id in self._recommended.get(
            WILDCARD, set()
        )

    # -- Compatibility (see matcher) ---------------------------------------

    def find_compatible(self, engine_id: str, organization_id: str | None = None) -> list[RendererDescriptor]:
        return matcher.find_compatible(self, engine_id, organization_id=organization_id)

    def is_compatible(self, engine_id: str, renderer_id: str) -> bool:
        return matcher.is_compatible(self, engine_id, renderer_id)

    def __len__(self) -> int:
        return len(self.latest_engines()) + len(self.latest_renderers())
