"""Inputs and outputs of the engine and renderer capabilities."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MeasurementSummary(BaseModel):
    """Validated per-session summary produced by the acquisition pipeline.

    The pipeline treats ``per_signal_metrics`` as opaque; only
    ``quality_score`` is inspected before an engine is invoked.
    """

    session_id: str = Field(..., min_length=1, description="Measurement session identifier.")
    subject_id: str = Field(..., min_length=1, description="Person the measurement belongs to.")
    quality_score: float = Field(..., ge=0.0, le=100.0, description="Overall signal quality, 0-100.")
    per_signal_metrics: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description="Metrics keyed by signal channel (eeg, ppg, acc).",
    )
    measured_at: datetime | None = Field(default=None, description="When the session was recorded.")


class ValidationReport(BaseModel):
    """Result of an engine's own pre-flight check of a summary."""

    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    quality_score: float = Field(default=0.0, ge=0.0, le=100.0)


class AnalysisInsights(BaseModel):
    summary: str = ""
    detailed_analysis: str = ""
    recommendations: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class AnalysisResult(BaseModel):
    """Structured output of an analysis engine."""

    analysis_id: str = Field(..., min_length=1)
    engine_id: str = Field(..., min_length=1)
    engine_version: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=_utcnow)
    overall_score: float = Field(default=0.0, ge=0.0, le=100.0)
    stress_level: float = Field(default=0.0, ge=0.0, le=100.0)
    focus_level: float = Field(default=0.0, ge=0.0, le=100.0)
    insights: AnalysisInsights = Field(default_factory=AnalysisInsights)
    metrics: dict[str, Any] = Field(default_factory=dict)
    processing_time_ms: float = Field(default=0.0, ge=0.0)


class RenderedArtifact(BaseModel):
    """Deliverable produced by a renderer and persisted by the pipeline."""

    id: str = Field(..., min_length=1, description="Artifact identifier in the document store.")
    job_id: str | None = Field(default=None, description="Report job that produced the artifact.")
    renderer_id: str = Field(..., min_length=1)
    renderer_version: str = Field(..., min_length=1)
    output_format: str = Field(..., description="One of the renderer output formats.")
    mime_type: str = Field(..., description="Content type of ``content``.")
    content: str = Field(..., description="Rendered document body.")
    size_bytes: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=_utcnow)
