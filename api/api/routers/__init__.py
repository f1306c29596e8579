"""API router modules for the report control plane."""

from __future__ import annotations

from api.routers import catalog, credits, health, reports, shares

__all__ = [
    "catalog",
    "credits",
    "health",
    "reports",
    "shares",
]
