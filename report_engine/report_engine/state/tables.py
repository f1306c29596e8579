"""SQLAlchemy 2.0 ORM table definitions for the report pipeline state store.

All tables use the ``Mapped`` / ``mapped_column`` declaration style.  The
``Base`` declarative base is exported for ``create_all`` at startup and for
the repository layer.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    PrimaryKeyConstraint,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

# Cross-dialect JSON type: JSONB on PostgreSQL, plain JSON (TEXT) on SQLite.
_JsonType = JSONB().with_variant(JSON(), "sqlite")


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware ``DateTime`` that round-trips as UTC on every dialect.

    SQLite stores timestamps without an offset, so values read back are
    naive; they are re-attached to UTC here.  Values are converted to UTC on
    the way in so string comparison on SQLite stays chronological.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all report pipeline tables."""


# ---------------------------------------------------------------------------
# Credit ledger
# ---------------------------------------------------------------------------


class CreditAccountTable(Base):
    """Per-account credit balance.  A cached projection of ``credit_transactions``."""

    __tablename__ = "credit_accounts"

    account_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_non_negative"),)


class CreditTransactionTable(Base):
    """Append-only credit ledger.  Rows are never updated or deleted."""

    __tablename__ = "credit_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("credit_accounts.account_id"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_signed: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    related_job_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reference: Mapped[str | None] = mapped_column(String(256), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "kind IN ('RESERVE', 'CHARGE', 'REFUND', 'TOPUP')",
            name="ck_credit_transactions_kind",
        ),
        CheckConstraint("amount >= 0", name="ck_credit_transactions_amount"),
        # At most one entry of each kind per job: the log itself rejects a
        # second CHARGE or REFUND even if reservation state were bypassed.
        UniqueConstraint("related_job_id", "kind", name="uq_credit_transactions_job_kind"),
        Index("ix_credit_transactions_account", "account_id", "id"),
    )


class CreditReservationTable(Base):
    """Settlement state of the credit held for a report job."""

    __tablename__ = "credit_reservations"

    job_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    account_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("credit_accounts.account_id"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="RESERVED")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    settled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('RESERVED', 'CHARGED', 'REFUNDED')",
            name="ck_credit_reservations_status",
        ),
        Index("ix_credit_reservations_account_status", "account_id", "status"),
    )


# ---------------------------------------------------------------------------
# Report jobs
# ---------------------------------------------------------------------------


class ReportJobTable(Base):
    """One report generation request and its pipeline stage."""

    __tablename__ = "report_jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    account_id: Mapped[str] = mapped_column(String(128), nullable=False)
    requester_id: Mapped[str] = mapped_column(String(128), nullable=False)
    organization_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    session_id: Mapped[str] = mapped_column(String(128), nullable=False)
    engine_id: Mapped[str] = mapped_column(String(128), nullable=False)
    engine_version: Mapped[str | None] = mapped_column(String(32), nullable=True)
    renderer_id: Mapped[str] = mapped_column(String(128), nullable=False)
    renderer_version: Mapped[str | None] = mapped_column(String(32), nullable=True)
    stage: Mapped[str] = mapped_column(String(16), nullable=False, default="QUEUED")
    reserved_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    analysis_result: Mapped[dict[str, Any] | None] = mapped_column(_JsonType, nullable=True)
    rendered_artifact_ref: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error_info: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stage_timestamps: Mapped[dict[str, str]] = mapped_column(_JsonType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "stage IN ('QUEUED', 'ANALYZING', 'RENDERING', 'COMPLETED', 'FAILED')",
            name="ck_report_jobs_stage",
        ),
        Index("ix_report_jobs_account_created", "account_id", "created_at"),
        Index("ix_report_jobs_stage_updated", "stage", "updated_at"),
    )


# ---------------------------------------------------------------------------
# Share links
# ---------------------------------------------------------------------------


class ShareLinkTable(Base):
    """Bounded external access token for a completed report."""

    __tablename__ = "share_links"

    token: Mapped[str] = mapped_column(String(64), primary_key=True)
    job_id: Mapped[str] = mapped_column(String(64), ForeignKey("report_jobs.id"), nullable=False)
    binding_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    # HMAC-SHA256 of the normalised subject binding; the raw value is never stored.
    binding_digest: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    max_access_count: Mapped[int] = mapped_column(Integer, nullable=False)
    access_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_accessed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("max_access_count >= 1", name="ck_share_links_max_access"),
        CheckConstraint(
            "access_count >= 0 AND access_count <= max_access_count",
            name="ck_share_links_access_bound",
        ),
        Index("ix_share_links_job", "job_id"),
    )


# ---------------------------------------------------------------------------
# Document store
# ---------------------------------------------------------------------------


class DocumentTable(Base):
    """Collection-scoped JSON documents (summaries, rendered artifacts)."""

    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(String(128), nullable=False)
    doc_id: Mapped[str] = mapped_column(String(128), nullable=False)
    body: Mapped[dict[str, Any]] = mapped_column(_JsonType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("collection", "doc_id"),
        Index("ix_documents_collection", "collection"),
    )
