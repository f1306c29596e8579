"""Catalog descriptors for analysis engines and report renderers.

Descriptors are frozen once constructed.  A registry may hold several
versions of the same id; retiring a version replaces its descriptor with a
copy whose ``active`` flag is ``False`` rather than mutating it.
"""

from __future__ import annotations

from enum import Enum
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

WILDCARD = "*"


class SignalType(str, Enum):
    """Biosignal channels a measurement session may carry."""

    EEG = "eeg"
    PPG = "ppg"
    ACC = "acc"


class OutputFormat(str, Enum):
    """Closed set of deliverable formats a renderer may produce."""

    WEB = "web"
    PDF = "pdf"
    JSON = "json"
    EMAIL = "email"
    PPT = "ppt"
    WORD = "word"


class AccessControl(str, Enum):
    PUBLIC = "public"
    ORGANIZATION = "organization"


class _OrganizationScoped(BaseModel):
    """Public or single-organization availability shared by engines and renderers."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, max_length=128, description="Stable identifier.")
    access_control: AccessControl = Field(
        default=AccessControl.PUBLIC,
        description="Whether the entry is available to everyone or one organization.",
    )
    organization_id: str | None = Field(
        default=None,
        description="Owning organization for organization-scoped entries.",
    )

    @model_validator(mode="after")
    def _check_organization_scope(self) -> Self:
        if self.access_control == AccessControl.ORGANIZATION and not self.organization_id:
            raise ValueError(f"Organization-scoped entry {self.id!r} requires organization_id")
        return self

    def available_to(self, organization_id: str | None) -> bool:
        """Return ``True`` if callers from *organization_id* may use this entry."""
        if self.access_control == AccessControl.PUBLIC:
            return True
        return organization_id is not None and organization_id == self.organization_id


class EngineDescriptor(_OrganizationScoped):
    """Metadata for one version of an analysis engine."""

    id: str = Field(..., min_length=1, max_length=128, description="Stable engine identifier.")
    version: str = Field(..., min_length=1, max_length=32, description="Engine version string.")
    name: str = Field(default="", description="Human-readable engine name.")
    description: str = Field(default="", description="Short description shown in catalogs.")
    cost_per_analysis: int = Field(..., ge=0, description="Credits consumed by one analysis.")
    supported_data_types: frozenset[SignalType] = Field(
        default_factory=frozenset,
        description="Signal channels the engine can analyse.",
    )
    quality_threshold: float = Field(
        default=0.0,
        ge=0.0,
        le=100.0,
        description="Minimum measurement quality score the engine accepts.",
    )
    timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Engine-specific call timeout; the pipeline default applies when unset.",
    )
    recommended_renderers: tuple[str, ...] = Field(
        default=(),
        description="Renderer ids curated as the best match for this engine.",
    )
    active: bool = Field(default=True, description="False once the version is retired.")


class RendererDescriptor(_OrganizationScoped):
    """Metadata for one version of a report renderer."""

    id: str = Field(..., min_length=1, max_length=128, description="Stable renderer identifier.")
    version: str = Field(..., min_length=1, max_length=32, description="Renderer version string.")
    name: str = Field(default="", description="Human-readable renderer name.")
    description: str = Field(default="", description="Short description shown in catalogs.")
    output_format: OutputFormat = Field(..., description="Format of the produced artifact.")
    cost_per_render: int = Field(..., ge=0, description="Credits consumed by one render.")
    compatible_engine_ids: frozenset[str] = Field(
        ...,
        description="Engine ids this renderer accepts; '*' accepts every engine.",
    )
    timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Renderer-specific call timeout; the pipeline default applies when unset.",
    )
    active: bool = Field(default=True, description="False once the version is retired.")

    def supports(self, engine_id: str) -> bool:
        """Return ``True`` if this renderer declares support for *engine_id*."""
        return WILDCARD in self.compatible_engine_ids or engine_id in self.compatible_engine_ids
