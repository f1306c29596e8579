"""Report job models tracking a request through the generation pipeline."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class JobStage(str, Enum):
    """Lifecycle stage of a report job.

    ``QUEUED -> ANALYZING -> RENDERING -> COMPLETED``; ``FAILED`` is
    reachable from every non-terminal stage.
    """

    QUEUED = "QUEUED"
    ANALYZING = "ANALYZING"
    RENDERING = "RENDERING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def terminal(self) -> bool:
        return self in (JobStage.COMPLETED, JobStage.FAILED)


class RequestContext(BaseModel):
    """Caller identity, already authenticated by the surrounding platform."""

    account_id: str = Field(..., min_length=1, max_length=128)
    requester_id: str = Field(..., min_length=1, max_length=128)
    organization_id: str | None = Field(default=None, max_length=128)


class ReportJob(BaseModel):
    """Snapshot of one report job."""

    id: str
    account_id: str
    requester_id: str
    organization_id: str | None = None
    session_id: str
    engine_id: str
    engine_version: str | None = None
    renderer_id: str
    renderer_version: str | None = None
    stage: JobStage
    reserved_amount: int = 0
    analysis_result: dict[str, Any] | None = None
    rendered_artifact_ref: str | None = None
    error_info: str | None = None
    attempts: int = 0
    stage_timestamps: dict[str, str] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime | None = None

    @property
    def terminal(self) -> bool:
        return self.stage.terminal
