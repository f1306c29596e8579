"""Request and response models for the report API.

Domain snapshots (``ReportJob``, descriptors, ledger entries) are returned
as-is; the models here cover request bodies and the few responses that add
API-only fields.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field
from report_engine.models.job import JobStage
from report_engine.models.sharing import ShareLink, SubjectBinding, SubjectBindingKind

# ---------------------------------------------------------------------------
# Report jobs
# ---------------------------------------------------------------------------


class SubmitReportRequest(BaseModel):
    """Body of ``POST /reports/jobs``."""

    session_id: str = Field(..., min_length=1, max_length=128, description="Measurement session to analyse.")
    engine_id: str = Field(..., min_length=1, max_length=128)
    renderer_id: str = Field(..., min_length=1, max_length=128)
    options: dict[str, Any] = Field(default_factory=dict, description="Passed through to engine and renderer.")


class SubmitReportResponse(BaseModel):
    job_id: str
    stage: JobStage


# ---------------------------------------------------------------------------
# Share links
# ---------------------------------------------------------------------------


class IssueShareRequest(BaseModel):
    """Body of ``POST /reports/jobs/{job_id}/shares``.

    ``subject_binding`` is optional at the schema level so that a missing
    binding surfaces as a domain error with a precise message.
    """

    subject_binding: SubjectBinding | None = None
    expiry_days: int | None = Field(default=None, description="Defaults to the configured expiry.")
    max_access_count: int | None = Field(default=None, description="Defaults to the configured access limit.")


class ResolveShareRequest(BaseModel):
    subject_proof: SubjectBinding | None = None


class ShareLinkResponse(BaseModel):
    token: str
    url: str
    job_id: str
    binding_kind: SubjectBindingKind
    expires_at: datetime
    max_access_count: int
    access_count: int
    remaining_accesses: int
    revoked_at: datetime | None = None
    created_at: datetime

    @classmethod
    def from_link(cls, link: ShareLink, url: str) -> ShareLinkResponse:
        return cls(
            token=link.token,
            url=url,
            job_id=link.job_id,
            binding_kind=link.binding_kind,
            expires_at=link.expires_at,
            max_access_count=link.max_access_count,
            access_count=link.access_count,
            remaining_accesses=link.remaining_accesses,
            revoked_at=link.revoked_at,
            created_at=link.created_at,
        )


# ---------------------------------------------------------------------------
# Credits
# ---------------------------------------------------------------------------


class BalanceResponse(BaseModel):
    account_id: str
    balance: int


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Body returned for every mapped domain error."""

    detail: str
    error: str
    job_id: str | None = None
    reason: str | None = None
    required: int | None = None
    available: int | None = None
