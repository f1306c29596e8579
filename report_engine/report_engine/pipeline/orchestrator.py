"""Report generation orchestrator.

Drives a job through ``QUEUED -> ANALYZING -> RENDERING -> COMPLETED``,
failing it from any non-terminal stage.

* Validation (catalog lookup, compatibility, organization scope of engine
  and renderer, the organization's monthly analysis limit, quality gate,
  engine pre-flight) runs before any credit moves.  A rejected job is
  kept as FAILED for audit and the :class:`ValidationError` is raised to the
  caller.
* The combined engine and renderer cost is reserved in the same database
  transaction as the ``QUEUED -> ANALYZING`` transition.
* Analysis and rendering run in a background task.  Each capability call is
  bounded by its own timeout; the engine call is retried once.  Any failure
  after the reservation refunds it in the same transaction that marks the
  job FAILED.
* Every stage change is a conditional update on the expected current stage.
  A result arriving after the job was cancelled, reaped or failed finds the
  job already moved and is discarded.

Each step uses its own short transaction; no session is held across a
capability call.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from report_engine.config import Settings
from report_engine.documents.store import DocumentStore
from report_engine.documents.summaries import SummaryProvider
from report_engine.errors import (
    EngineError,
    InsufficientCreditError,
    JobStateError,
    LedgerConsistencyError,
    NotFoundError,
    RendererError,
    ValidationError,
)
from report_engine.executor.retry import RetryConfig, async_retry_with_backoff
from report_engine.ledger.ledger import CreditLedger
from report_engine.models.analysis import AnalysisResult, MeasurementSummary, RenderedArtifact
from report_engine.models.catalog import EngineDescriptor, RendererDescriptor
from report_engine.models.job import JobStage, ReportJob, RequestContext
from report_engine.models.ledger import ReservationStatus
from report_engine.registry.registry import CatalogRegistry
from report_engine.state.database import session_scope
from report_engine.state.repository import JobRepository, job_from_row

logger = logging.getLogger(__name__)

ARTIFACT_COLLECTION = "rendered_reports"

_CANCELLABLE = (JobStage.QUEUED, JobStage.ANALYZING)
_RECLAIMABLE = (JobStage.QUEUED, JobStage.ANALYZING, JobStage.RENDERING)


def _describe(exc: BaseException) -> str:
    if isinstance(exc, TimeoutError):
        return "timeout"
    return str(exc) or type(exc).__name__


class ReportOrchestrator:
    """Runs report jobs against the catalog, the ledger and the document store.

    Parameters
    ----------
    session_factory:
        Factory for short-lived sessions, one per pipeline step.
    registry:
        Catalog used to resolve engine and renderer ids.
    summaries:
        Source of measurement summaries.
    documents:
        Store receiving rendered artifacts.
    settings:
        Timeouts and retry delay.
    retry_config:
        Engine retry policy.  Defaults to one retry after
        ``settings.engine_retry_delay_seconds``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: CatalogRegistry,
        summaries: SummaryProvider,
        documents: DocumentStore,
        settings: Settings,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry
        self._summaries = summaries
        self._documents = documents
        self._settings = settings
        self._retry_config = retry_config or RetryConfig(
            max_retries=1,
            base_delay=settings.engine_retry_delay_seconds,
            jitter=False,
        )
        self._tasks: dict[str, asyncio.Task[None]] = {}

    # -- Public API ---------------------------------------------------------

    async def submit(
        self,
        session_id: str,
        engine_id: str,
        renderer_id: str,
        context: RequestContext,
        options: dict[str, Any] | None = None,
    ) -> str:
        """Validate, reserve credit and start a report job.

        Returns the job id once the job is ANALYZING; progress is observed
        through :meth:`get_job`.

        Raises
        ------
        ValidationError
            The request is invalid.  No credit moved; the job is FAILED.
        InsufficientCreditError
            The account cannot cover the cost.  The job is FAILED with
            ``error_info="insufficient_credit"``.
        EngineError
            The engine's pre-flight check could not be performed.
        """
        options = dict(options or {})
        engine = self._registry.get_engine(engine_id)
        renderer = self._registry.get_renderer(renderer_id)
        job_id = uuid.uuid4().hex

        async with session_scope(self._session_factory) as session:
            await JobRepository(session).create(
                job_id,
                account_id=context.account_id,
                requester_id=context.requester_id,
                organization_id=context.organization_id,
                session_id=session_id,
                engine_id=engine_id,
                engine_version=engine.version if engine else None,
                renderer_id=renderer_id,
                renderer_version=renderer.version if renderer else None,
            )
        logger.info(
            "Job %s queued: engine=%s renderer=%s account=%s",
            job_id,
            engine_id,
            renderer_id,
            context.account_id,
            extra={"job_id": job_id, "account_id": context.account_id},
        )

        try:
            summary = await self._validate(job_id, engine, renderer, engine_id, renderer_id, session_id, context)
        except ValidationError as exc:
            exc.job_id = job_id
            await self._fail_without_refund(job_id, JobStage.QUEUED, f"validation_failed: {exc}")
            raise
        except (EngineError, TimeoutError) as exc:
            await self._fail_without_refund(job_id, JobStage.QUEUED, f"engine_unavailable: {_describe(exc)}")
            raise EngineError(f"Engine pre-flight check failed: {_describe(exc)}", job_id=job_id) from exc

        assert engine is not None and renderer is not None  # noqa: S101
        cost = engine.cost_per_analysis + renderer.cost_per_render
        try:
            async with session_scope(self._session_factory) as session:
                try:
                    await CreditLedger(session).reserve(context.account_id, cost, job_id)
                except NotFoundError as exc:
                    raise InsufficientCreditError(context.account_id, cost, 0, job_id=job_id) from exc
                moved = await JobRepository(session).transition(
                    job_id,
                    JobStage.QUEUED,
                    JobStage.ANALYZING,
                    reserved_amount=cost,
                )
                if not moved:
                    raise JobStateError(f"Job {job_id} left QUEUED before it was funded", job_id=job_id)
        except InsufficientCreditError as exc:
            exc.job_id = job_id
            await self._fail_without_refund(job_id, JobStage.QUEUED, "insufficient_credit")
            raise

        self._start(job_id, engine, renderer, summary, options)
        return job_id

    async def get_job(self, job_id: str) -> ReportJob:
        async with session_scope(self._session_factory) as session:
            row = await JobRepository(session).get(job_id)
            if row is None:
                raise NotFoundError(f"Report job {job_id!r} not found", job_id=job_id)
            return job_from_row(row)

    async def list_jobs(self, account_id: str, stage: JobStage | None = None, limit: int = 50) -> list[ReportJob]:
        async with session_scope(self._session_factory) as session:
            rows = await JobRepository(session).list_for_account(account_id, stage=stage, limit=limit)
            return [job_from_row(row) for row in rows]

    async def get_artifact(self, job_id: str) -> RenderedArtifact:
        """Return the rendered artifact of a COMPLETED job."""
        job = await self.get_job(job_id)
        if job.stage != JobStage.COMPLETED or job.rendered_artifact_ref is None:
            raise JobStateError(f"Job {job_id} has no artifact (stage {job.stage.value})", job_id=job_id)
        doc = await self._documents.get(ARTIFACT_COLLECTION, job.rendered_artifact_ref)
        if doc is None:
            raise NotFoundError(f"Artifact {job.rendered_artifact_ref!r} of job {job_id} is missing", job_id=job_id)
        return RenderedArtifact.model_validate(doc)

    async def cancel(self, job_id: str, context: RequestContext) -> ReportJob:
        """Cancel a QUEUED or ANALYZING job through the refund path.

        An engine call already in flight keeps running until it returns or
        times out; its result is then discarded.
        """
        job = await self.get_job(job_id)
        if job.account_id != context.account_id:
            raise NotFoundError(f"Report job {job_id!r} not found", job_id=job_id)
        if job.stage not in _CANCELLABLE:
            raise JobStateError(f"Job {job_id} is {job.stage.value} and can no longer be cancelled", job_id=job_id)
        if not await self._abort(job_id, job.stage, "cancelled"):
            current = await self.get_job(job_id)
            raise JobStateError(
                f"Job {job_id} moved to {current.stage.value} before it could be cancelled",
                job_id=job_id,
            )
        logger.info("Job %s cancelled by %s", job_id, context.requester_id)
        return await self.get_job(job_id)

    async def reap_stale_jobs(self, older_than_seconds: int | None = None) -> list[str]:
        """Fail and refund jobs left in a running stage by a crashed process.

        Jobs still owned by a task of this orchestrator are skipped.
        """
        age = older_than_seconds if older_than_seconds is not None else self._settings.stale_job_seconds
        threshold = datetime.now(UTC) - timedelta(seconds=age)
        async with session_scope(self._session_factory) as session:
            rows = await JobRepository(session).list_stale(_RECLAIMABLE, threshold)
            candidates = [(row.id, JobStage(row.stage)) for row in rows]

        reaped: list[str] = []
        for job_id, stage in candidates:
            if job_id in self._tasks:
                continue
            if await self._abort(job_id, stage, "stale_job"):
                reaped.append(job_id)
        if reaped:
            logger.warning("Reaped %d stale job(s): %s", len(reaped), ", ".join(reaped))
        return reaped

    async def wait_for(self, job_id: str, timeout: float | None = None) -> ReportJob:
        """Wait for the background work of *job_id* (if any) and return the job."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait([task], timeout=timeout)
        return await self.get_job(job_id)

    @property
    def running_jobs(self) -> list[str]:
        return sorted(self._tasks)

    async def aclose(self, cancel: bool = False) -> None:
        """Wait for every background job, or cancel them when *cancel* is set.

        Cancelled jobs stay in their running stage until
        :meth:`reap_stale_jobs` reclaims them.
        """
        tasks = list(self._tasks.values())
        if cancel:
            for task in tasks:
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # -- Validation ---------------------------------------------------------

    async def _validate(
        self,
        job_id: str,
        engine: EngineDescriptor | None,
        renderer: RendererDescriptor | None,
        engine_id: str,
        renderer_id: str,
        session_id: str,
        context: RequestContext,
    ) -> MeasurementSummary:
        if engine is None:
            raise ValidationError(f"Unknown or retired engine {engine_id!r}")
        if renderer is None:
            raise ValidationError(f"Unknown or retired renderer {renderer_id!r}")
        if not renderer.supports(engine.id):
            raise ValidationError(f"Renderer {renderer.id!r} does not support engine {engine.id!r}")
        if not engine.available_to(context.organization_id):
            raise ValidationError(f"Engine {engine.id!r} is restricted to another organization")
        if not renderer.available_to(context.organization_id):
            raise ValidationError(f"Renderer {renderer.id!r} is restricted to another organization")
        if context.organization_id is not None:
            await self._check_monthly_limit(job_id, context.organization_id)

        try:
            summary = await self._summaries.get_summary(session_id)
        except NotFoundError as exc:
            raise ValidationError(str(exc)) from exc

        if summary.quality_score < engine.quality_threshold:
            raise ValidationError(
                f"Measurement quality {summary.quality_score:g} is below the "
                f"{engine.quality_threshold:g} required by {engine.id}"
            )

        capability = self._registry.engine_capability(engine)
        report = await asyncio.wait_for(capability.validate(summary), self._engine_timeout(engine))
        if not report.is_valid:
            reasons = "; ".join(report.errors) or "no reason given"
            raise ValidationError(f"Engine {engine.id} rejected the measurement: {reasons}")
        return summary

    async def _check_monthly_limit(self, job_id: str, organization_id: str) -> None:
        limit = self._settings.organization_monthly_analysis_limits.get(organization_id)
        if limit is None:
            return
        month_start = datetime.now(UTC).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        async with session_scope(self._session_factory) as session:
            used = await JobRepository(session).count_for_organization(
                organization_id,
                month_start,
                exclude_job_id=job_id,
            )
        if used >= limit:
            raise ValidationError(
                f"Organization {organization_id!r} has used {used} of {limit} analyses this month"
            )

    # -- Background execution ----------------------------------------------

    def _start(
        self,
        job_id: str,
        engine: EngineDescriptor,
        renderer: RendererDescriptor,
        summary: MeasurementSummary,
        options: dict[str, Any],
    ) -> None:
        task = asyncio.create_task(
            self._run(job_id, engine, renderer, summary, options),
            name=f"report-job-{job_id}",
        )
        self._tasks[job_id] = task
        task.add_done_callback(lambda t: self._forget(job_id, t))

    def _forget(self, job_id: str, task: asyncio.Task[None]) -> None:
        self._tasks.pop(job_id, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Job %s task ended with an unhandled error", job_id, exc_info=task.exception())

    async def _run(
        self,
        job_id: str,
        engine: EngineDescriptor,
        renderer: RendererDescriptor,
        summary: MeasurementSummary,
        options: dict[str, Any],
    ) -> None:
        stage = JobStage.ANALYZING
        attempts = 0

        def _count(attempt: int) -> None:
            nonlocal attempts
            attempts = attempt

        try:
            try:
                analysis = await async_retry_with_backoff(
                    lambda: self._call_engine(engine, summary, options),
                    self._retry_config,
                    retryable_exceptions=(EngineError, TimeoutError),
                    on_attempt=_count,
                )
            except (EngineError, TimeoutError) as exc:
                await self._abort(job_id, stage, f"engine_failed: {_describe(exc)}", attempts=attempts)
                return

            async with session_scope(self._session_factory) as session:
                moved = await JobRepository(session).transition(
                    job_id,
                    JobStage.ANALYZING,
                    JobStage.RENDERING,
                    analysis_result=analysis.model_dump(mode="json"),
                    attempts=attempts,
                )
            if not moved:
                logger.info("Job %s: discarding analysis that arrived after the job left ANALYZING", job_id)
                return

            stage = JobStage.RENDERING
            try:
                artifact = await self._call_renderer(renderer, analysis, options)
            except (RendererError, TimeoutError) as exc:
                await self._abort(job_id, stage, f"renderer_failed: {_describe(exc)}")
                return

            artifact = artifact.model_copy(update={"job_id": job_id})
            await self._documents.put(ARTIFACT_COLLECTION, artifact.id, artifact.model_dump(mode="json"))

            async with session_scope(self._session_factory) as session:
                moved = await JobRepository(session).transition(
                    job_id,
                    JobStage.RENDERING,
                    JobStage.COMPLETED,
                    rendered_artifact_ref=artifact.id,
                )
                if moved:
                    await CreditLedger(session).charge(job_id)
            if not moved:
                logger.info("Job %s: discarding artifact %s, job left RENDERING", job_id, artifact.id)
                return
            logger.info(
                "Job %s completed (artifact %s, %d bytes)",
                job_id,
                artifact.id,
                artifact.size_bytes,
                extra={"job_id": job_id},
            )

        except LedgerConsistencyError as exc:
            # Already logged at CRITICAL by the ledger; settlement state is
            # left for an operator to inspect.
            await self._fail_without_refund(job_id, stage, f"ledger_consistency_error: {exc}")
        except Exception as exc:
            logger.exception("Job %s crashed during %s", job_id, stage.value)
            await self._abort(job_id, stage, f"internal_error: {type(exc).__name__}")

    async def _call_engine(
        self,
        engine: EngineDescriptor,
        summary: MeasurementSummary,
        options: dict[str, Any],
    ) -> AnalysisResult:
        capability = self._registry.engine_capability(engine)
        return await asyncio.wait_for(capability.analyze(summary, options), self._engine_timeout(engine))

    async def _call_renderer(
        self,
        renderer: RendererDescriptor,
        analysis: AnalysisResult,
        options: dict[str, Any],
    ) -> RenderedArtifact:
        capability = self._registry.renderer_capability(renderer)
        timeout = renderer.timeout_seconds or self._settings.renderer_timeout_seconds
        return await asyncio.wait_for(capability.render(analysis, options), timeout)

    def _engine_timeout(self, engine: EngineDescriptor) -> float:
        return engine.timeout_seconds or self._settings.engine_timeout_seconds

    # -- Failure paths ------------------------------------------------------

    async def _abort(self, job_id: str, expected: JobStage, error_info: str, **values: Any) -> bool:
        """Fail *job_id* if it is still in *expected* and refund its reservation.

        The stage change and the refund commit together.  Returns ``False``
        when the job had already moved on, in which case nothing changes.
        """
        refunded = 0
        async with session_scope(self._session_factory) as session:
            moved = await JobRepository(session).transition(
                job_id,
                expected,
                JobStage.FAILED,
                error_info=error_info,
                **values,
            )
            if moved:
                ledger = CreditLedger(session)
                reservation = await ledger.get_reservation(job_id)
                if reservation is not None and reservation.status == ReservationStatus.RESERVED:
                    refunded = (await ledger.refund(job_id)).amount

        if moved:
            logger.warning(
                "Job %s failed during %s: %s (refunded %d)",
                job_id,
                expected.value,
                error_info,
                refunded,
                extra={"job_id": job_id},
            )
        else:
            logger.info("Job %s already left %s; dropping failure %r", job_id, expected.value, error_info)
        return moved

    async def _fail_without_refund(self, job_id: str, expected: JobStage, error_info: str) -> bool:
        async with session_scope(self._session_factory) as session:
            moved = await JobRepository(session).transition(job_id, expected, JobStage.FAILED, error_info=error_info)
        if moved:
            logger.info(
                "Job %s failed during %s: %s",
                job_id,
                expected.value,
                error_info,
                extra={"job_id": job_id},
            )
        return moved
