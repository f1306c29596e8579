"""Share link models."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field


class SubjectBindingKind(str, Enum):
    BIRTH_DATE = "birth_date"
    IDENTITY_CLAIM = "identity_claim"


class SubjectBinding(BaseModel):
    """Identity fact a viewer must present to open a share link.

    ``birth_date`` values are normalised to ISO ``YYYY-MM-DD``; identity
    claims are compared after trimming and case folding.
    """

    kind: SubjectBindingKind
    value: str = Field(..., max_length=256)

    def normalized(self) -> str:
        raw = self.value.strip()
        if self.kind == SubjectBindingKind.BIRTH_DATE:
            return date.fromisoformat(raw).isoformat()
        return raw.casefold()


class ShareLink(BaseModel):
    token: str
    job_id: str
    binding_kind: SubjectBindingKind
    expires_at: datetime
    max_access_count: int = Field(..., ge=1)
    access_count: int = Field(default=0, ge=0)
    created_by: str
    created_at: datetime
    revoked_at: datetime | None = None
    last_accessed_at: datetime | None = None

    @property
    def remaining_accesses(self) -> int:
        return max(self.max_access_count - self.access_count, 0)
