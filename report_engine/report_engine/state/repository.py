"""Repository layer for report jobs, share links and documents.

Each repository wraps an ``AsyncSession`` and exposes domain-oriented
operations.  Repositories ``flush()`` but never commit; the caller owns the
transaction so that several repositories (and the credit ledger) can be
combined into one atomic unit.

Stage changes and share link consumption are conditional ``UPDATE``
statements whose ``rowcount`` tells the caller whether it won the race.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from report_engine.models.job import JobStage, ReportJob
from report_engine.models.sharing import ShareLink, SubjectBindingKind
from report_engine.state.tables import DocumentTable, ReportJobTable, ShareLinkTable

logger = logging.getLogger(__name__)


def _dialect_upsert(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
    update_columns: list[str],
) -> Any:
    """Build a dialect-aware ``INSERT ... ON CONFLICT DO UPDATE`` statement."""
    bind = session.get_bind()
    dialect_name = getattr(getattr(bind, "dialect", None), "name", "")
    insert_fn = sqlite_insert if dialect_name == "sqlite" else pg_insert
    stmt = insert_fn(table).values(**values)
    return stmt.on_conflict_do_update(
        index_elements=index_elements,
        set_={col: getattr(stmt.excluded, col) for col in update_columns},
    )


# ---------------------------------------------------------------------------
# Report jobs
# ---------------------------------------------------------------------------


def job_from_row(row: ReportJobTable) -> ReportJob:
    return ReportJob(
        id=row.id,
        account_id=row.account_id,
        requester_id=row.requester_id,
        organization_id=row.organization_id,
        session_id=row.session_id,
        engine_id=row.engine_id,
        engine_version=row.engine_version,
        renderer_id=row.renderer_id,
        renderer_version=row.renderer_version,
        stage=JobStage(row.stage),
        reserved_amount=row.reserved_amount,
        analysis_result=row.analysis_result,
        rendered_artifact_ref=row.rendered_artifact_ref,
        error_info=row.error_info,
        attempts=row.attempts,
        stage_timestamps=dict(row.stage_timestamps or {}),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class JobRepository:
    """Persistence for :class:`ReportJob` rows and their stage transitions."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        job_id: str,
        *,
        account_id: str,
        requester_id: str,
        organization_id: str | None,
        session_id: str,
        engine_id: str,
        engine_version: str | None,
        renderer_id: str,
        renderer_version: str | None,
    ) -> ReportJobTable:
        """Insert a new job in the QUEUED stage."""
        now = datetime.now(UTC)
        row = ReportJobTable(
            id=job_id,
            account_id=account_id,
            requester_id=requester_id,
            organization_id=organization_id,
            session_id=session_id,
            engine_id=engine_id,
            engine_version=engine_version,
            renderer_id=renderer_id,
            renderer_version=renderer_version,
            stage=JobStage.QUEUED.value,
            stage_timestamps={JobStage.QUEUED.value: now.isoformat()},
            created_at=now,
            updated_at=now,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, job_id: str) -> ReportJobTable | None:
        result = await self._session.execute(
            select(ReportJobTable).where(ReportJobTable.id == job_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def transition(
        self,
        job_id: str,
        expected: JobStage,
        target: JobStage,
        **values: Any,
    ) -> bool:
        """Move *job_id* from *expected* to *target* if it is still in *expected*.

        Extra keyword arguments are written in the same statement.  Returns
        ``False`` when another writer already moved the job, in which case
        nothing is changed.
        """
        stamps = await self._session.execute(
            select(ReportJobTable.stage_timestamps).where(ReportJobTable.id == job_id)
        )
        current = stamps.scalar_one_or_none()
        if current is None:
            return False

        now = datetime.now(UTC)
        merged = dict(current)
        merged[target.value] = now.isoformat()
        stmt = (
            update(ReportJobTable)
            .where(ReportJobTable.id == job_id, ReportJobTable.stage == expected.value)
            .values(stage=target.value, stage_timestamps=merged, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        moved = (result.rowcount or 0) > 0  # type: ignore[attr-defined]
        if moved:
            logger.debug("Job %s: %s -> %s", job_id, expected.value, target.value)
        return moved

    async def list_for_account(
        self,
        account_id: str,
        stage: JobStage | None = None,
        limit: int = 50,
    ) -> list[ReportJobTable]:
        stmt = select(ReportJobTable).where(ReportJobTable.account_id == account_id)
        if stage is not None:
            stmt = stmt.where(ReportJobTable.stage == stage.value)
        stmt = stmt.order_by(ReportJobTable.created_at.desc(), ReportJobTable.id).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_stale(self, stages: tuple[JobStage, ...], updated_before: datetime) -> list[ReportJobTable]:
        """Return jobs sitting in one of *stages* since before *updated_before*."""
        stmt = (
            select(ReportJobTable)
            .where(
                ReportJobTable.stage.in_([s.value for s in stages]),
                ReportJobTable.updated_at < updated_before,
            )
            .order_by(ReportJobTable.updated_at)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def count_by_stage(self, account_id: str | None = None) -> dict[str, int]:
        stmt = select(ReportJobTable.stage, func.count()).group_by(ReportJobTable.stage)
        if account_id is not None:
            stmt = stmt.where(ReportJobTable.account_id == account_id)
        result = await self._session.execute(stmt)
        return {stage: count for stage, count in result.all()}

    async def count_for_organization(
        self,
        organization_id: str,
        since: datetime,
        exclude_job_id: str | None = None,
    ) -> int:
        """Count the organization's jobs created at or after *since*, excluding FAILED ones."""
        stmt = select(func.count()).where(
            ReportJobTable.organization_id == organization_id,
            ReportJobTable.created_at >= since,
            ReportJobTable.stage != JobStage.FAILED.value,
        )
        if exclude_job_id is not None:
            stmt = stmt.where(ReportJobTable.id != exclude_job_id)
        result = await self._session.execute(stmt)
        return int(result.scalar_one())


# ---------------------------------------------------------------------------
# Share links
# ---------------------------------------------------------------------------


def share_link_from_row(row: ShareLinkTable) -> ShareLink:
    return ShareLink(
        token=row.token,
        job_id=row.job_id,
        binding_kind=SubjectBindingKind(row.binding_kind),
        expires_at=row.expires_at,
        max_access_count=row.max_access_count,
        access_count=row.access_count,
        created_by=row.created_by,
        created_at=row.created_at,
        revoked_at=row.revoked_at,
        last_accessed_at=row.last_accessed_at,
    )


class ShareLinkRepository:
    """Persistence and atomic access accounting for share links."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        token: str,
        *,
        job_id: str,
        binding_kind: str,
        binding_digest: str,
        expires_at: datetime,
        max_access_count: int,
        created_by: str,
    ) -> ShareLinkTable:
        row = ShareLinkTable(
            token=token,
            job_id=job_id,
            binding_kind=binding_kind,
            binding_digest=binding_digest,
            expires_at=expires_at,
            max_access_count=max_access_count,
            access_count=0,
            created_by=created_by,
            created_at=datetime.now(UTC),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, token: str) -> ShareLinkTable | None:
        result = await self._session.execute(
            select(ShareLinkTable).where(ShareLinkTable.token == token).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def consume(self, token: str, now: datetime) -> bool:
        """Count one access if the link is live and below its limit.

        The bound check and the increment are one ``UPDATE`` statement, so
        concurrent callers can never push ``access_count`` past
        ``max_access_count``.
        """
        stmt = (
            update(ShareLinkTable)
            .where(
                ShareLinkTable.token == token,
                ShareLinkTable.revoked_at.is_(None),
                ShareLinkTable.expires_at > now,
                ShareLinkTable.access_count < ShareLinkTable.max_access_count,
            )
            .values(
                access_count=ShareLinkTable.access_count + 1,
                last_accessed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]

    async def revoke(self, token: str, now: datetime) -> bool:
        stmt = (
            update(ShareLinkTable)
            .where(ShareLinkTable.token == token, ShareLinkTable.revoked_at.is_(None))
            .values(revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]

    async def list_for_job(self, job_id: str) -> list[ShareLinkTable]:
        stmt = select(ShareLinkTable).where(ShareLinkTable.job_id == job_id).order_by(ShareLinkTable.created_at)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class DocumentRepository:
    """Collection-scoped JSON documents keyed by ``(collection, doc_id)``."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def put(self, collection: str, doc_id: str, body: dict[str, Any]) -> None:
        now = datetime.now(UTC)
        stmt = _dialect_upsert(
            self._session,
            DocumentTable,
            values={
                "collection": collection,
                "doc_id": doc_id,
                "body": body,
                "created_at": now,
                "updated_at": now,
            },
            index_elements=["collection", "doc_id"],
            update_columns=["body", "updated_at"],
        )
        await self._session.execute(stmt)
        await self._session.flush()

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        result = await self._session.execute(
            select(DocumentTable.body).where(
                DocumentTable.collection == collection,
                DocumentTable.doc_id == doc_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_collection(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        result = await self._session.execute(
            select(DocumentTable.doc_id, DocumentTable.body)
            .where(DocumentTable.collection == collection)
            .order_by(DocumentTable.doc_id)
        )
        return [(doc_id, body) for doc_id, body in result.all()]
