"""Engine/renderer catalog and compatibility matching."""

from report_engine.registry import matcher
from report_engine.registry.defaults import build_default_registry
from report_engine.registry.matcher import (
    compatibility_matrix,
    find_compatible,
    find_supported_engines,
    is_compatible,
    search_engines,
    select_best_renderer,
)
from report_engine.registry.registry import CatalogRegistry

__all__ = [
    "CatalogRegistry",
    "build_default_registry",
    "compatibility_matrix",
    "find_compatible",
    "find_supported_engines",
    "is_compatible",
    "matcher",
    "search_engines",
    "select_best_renderer",
]
