"""Facade over the pipeline, the ledger and the share link service.

This is the surface the HTTP layer and the CLI talk to.  Every call takes
the caller's :class:`RequestContext` explicitly; there is no ambient
session or "current user" state.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from report_engine.config import Settings
from report_engine.documents.store import DocumentStore, SqlDocumentStore
from report_engine.documents.summaries import DocumentSummaryProvider, SummaryProvider
from report_engine.errors import NotFoundError
from report_engine.executor.retry import RetryConfig
from report_engine.ledger.ledger import CreditLedger
from report_engine.models.analysis import MeasurementSummary, RenderedArtifact
from report_engine.models.job import JobStage, ReportJob, RequestContext
from report_engine.models.ledger import CreditAccount, CreditTransaction, LedgerAudit, TransactionKind
from report_engine.models.sharing import ShareLink, SubjectBinding
from report_engine.pipeline.orchestrator import ReportOrchestrator
from report_engine.registry.registry import CatalogRegistry
from report_engine.sharing.service import ShareLinkService
from report_engine.state.database import session_scope

logger = logging.getLogger(__name__)


class ReportService:
    """Entry point for report generation, credits and sharing.

    Parameters
    ----------
    session_factory:
        Factory for short-lived database sessions.
    registry:
        Engine/renderer catalog.
    settings:
        Pipeline settings.
    documents:
        Document store; defaults to the SQL-backed store on the same database.
    summaries:
        Measurement summary source; defaults to reading ``documents``.
    retry_config:
        Engine retry policy override.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: CatalogRegistry,
        settings: Settings,
        *,
        documents: DocumentStore | None = None,
        summaries: SummaryProvider | None = None,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.registry = registry
        self.settings = settings
        self.documents = documents or SqlDocumentStore(session_factory)
        self.summaries = summaries or DocumentSummaryProvider(self.documents)
        self.orchestrator = ReportOrchestrator(
            session_factory,
            registry,
            self.summaries,
            self.documents,
            settings,
            retry_config=retry_config,
        )
        self.sharing = ShareLinkService(session_factory, self.documents, settings)

    # -- Report jobs --------------------------------------------------------

    async def submit_report_job(
        self,
        session_id: str,
        engine_id: str,
        renderer_id: str,
        context: RequestContext,
        options: dict[str, Any] | None = None,
    ) -> str:
        return await self.orchestrator.submit(session_id, engine_id, renderer_id, context, options)

    async def get_job_status(self, job_id: str, context: RequestContext | None = None) -> ReportJob:
        """Return the job; when *context* is given the job must belong to its account."""
        job = await self.orchestrator.get_job(job_id)
        if context is not None and job.account_id != context.account_id:
            raise NotFoundError(f"Report job {job_id!r} not found", job_id=job_id)
        return job

    async def list_jobs(
        self,
        context: RequestContext,
        stage: JobStage | None = None,
        limit: int = 50,
    ) -> list[ReportJob]:
        return await self.orchestrator.list_jobs(context.account_id, stage=stage, limit=limit)

    async def cancel_job(self, job_id: str, context: RequestContext) -> ReportJob:
        return await self.orchestrator.cancel(job_id, context)

    async def get_report_artifact(self, job_id: str, context: RequestContext) -> RenderedArtifact:
        await self.get_job_status(job_id, context)
        return await self.orchestrator.get_artifact(job_id)

    async def reap_stale_jobs(self, older_than_seconds: int | None = None) -> list[str]:
        return await self.orchestrator.reap_stale_jobs(older_than_seconds)

    # -- Measurement summaries ---------------------------------------------

    async def store_summary(self, summary: MeasurementSummary) -> None:
        """Persist a summary for the default document-backed provider."""
        if not isinstance(self.summaries, DocumentSummaryProvider):
            raise TypeError("The configured summary provider is read-only")
        await self.summaries.save_summary(summary)

    # -- Share links --------------------------------------------------------

    async def issue_share_link(
        self,
        job_id: str,
        context: RequestContext,
        subject_binding: SubjectBinding | None,
        expiry_days: int | None = None,
        max_access_count: int | None = None,
    ) -> ShareLink:
        return await self.sharing.issue(job_id, context, subject_binding, expiry_days, max_access_count)

    async def resolve_share_link(self, token: str, subject_proof: SubjectBinding | None) -> RenderedArtifact:
        return await self.sharing.resolve(token, subject_proof)

    async def revoke_share_link(self, token: str, context: RequestContext) -> ShareLink:
        return await self.sharing.revoke(token, context)

    async def list_share_links(self, job_id: str, context: RequestContext) -> list[ShareLink]:
        return await self.sharing.list_for_job(job_id, context)

    # -- Credits ------------------------------------------------------------

    async def get_account_balance(self, account_id: str) -> int:
        async with session_scope(self._session_factory) as session:
            return await CreditLedger(session).balance(account_id)

    async def get_transactions(
        self,
        account_id: str,
        limit: int = 100,
        kinds: tuple[TransactionKind, ...] | None = None,
    ) -> list[CreditTransaction]:
        async with session_scope(self._session_factory) as session:
            return await CreditLedger(session).history(account_id, limit=limit, kinds=kinds)

    async def open_account(self, account_id: str, initial_balance: int = 0) -> CreditAccount:
        async with session_scope(self._session_factory) as session:
            return await CreditLedger(session).open_account(account_id, initial_balance)

    async def top_up(self, account_id: str, amount: int, reference: str | None = None) -> CreditTransaction:
        async with session_scope(self._session_factory) as session:
            return await CreditLedger(session).top_up(account_id, amount, reference)

    async def audit_account(self, account_id: str) -> LedgerAudit:
        async with session_scope(self._session_factory) as session:
            return await CreditLedger(session).verify_account(account_id)

    async def audit_all_accounts(self) -> list[LedgerAudit]:
        async with session_scope(self._session_factory) as session:
            ledger = CreditLedger(session)
            return [await ledger.verify_account(account_id) for account_id in await ledger.list_account_ids()]

    # -- Lifecycle ----------------------------------------------------------

    async def aclose(self, cancel: bool = False) -> None:
        await self.orchestrator.aclose(cancel=cancel)
