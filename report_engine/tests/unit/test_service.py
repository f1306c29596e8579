"""End-to-end tests through the :class:`ReportService` facade."""

from __future__ import annotations

import pytest
import pytest_asyncio
from fakes import FakeEngine, FakeRenderer, make_registry, make_summary
from report_engine.documents.summaries import SummaryProvider
from report_engine.errors import AccessDeniedError, NotFoundError
from report_engine.models.job import JobStage, RequestContext
from report_engine.models.ledger import TransactionKind
from report_engine.models.sharing import SubjectBinding, SubjectBindingKind
from report_engine.service import ReportService

PROOF = SubjectBinding(kind=SubjectBindingKind.IDENTITY_CLAIM, value="subject-1")


@pytest_asyncio.fixture
async def service(session_factory, settings):
    svc = ReportService(session_factory, make_registry(FakeEngine(), FakeRenderer()), settings)
    yield svc
    await svc.aclose(cancel=True)


class TestReportService:
    @pytest.mark.asyncio
    async def test_generate_share_and_resolve(self, service, context):
        await service.open_account(context.account_id, 10)
        await service.store_summary(make_summary())

        job_id = await service.submit_report_job("session-1", "eeg-test-v1", "web-test-v1", context)
        job = await service.orchestrator.wait_for(job_id, timeout=5)
        assert job.stage == JobStage.COMPLETED

        artifact = await service.get_report_artifact(job_id, context)
        link = await service.issue_share_link(job_id, context, PROOF, expiry_days=7, max_access_count=2)
        shared = await service.resolve_share_link(link.token, PROOF)
        assert shared.content == artifact.content

        assert [s.access_count for s in await service.list_share_links(job_id, context)] == [1]
        await service.revoke_share_link(link.token, context)
        with pytest.raises(AccessDeniedError):
            await service.resolve_share_link(link.token, PROOF)

    @pytest.mark.asyncio
    async def test_jobs_scoped_to_account(self, service, context):
        await service.open_account(context.account_id, 10)
        await service.store_summary(make_summary())
        job_id = await service.submit_report_job("session-1", "eeg-test-v1", "web-test-v1", context)
        await service.orchestrator.wait_for(job_id, timeout=5)

        other = RequestContext(account_id="acct-2", requester_id="user-2")
        with pytest.raises(NotFoundError):
            await service.get_job_status(job_id, other)
        with pytest.raises(NotFoundError):
            await service.get_report_artifact(job_id, other)
        assert await service.list_jobs(other) == []
        assert [j.id for j in await service.list_jobs(context)] == [job_id]
        assert (await service.get_job_status(job_id)).id == job_id

    @pytest.mark.asyncio
    async def test_credit_operations(self, service):
        await service.open_account("acct-9", 5)
        tx = await service.top_up("acct-9", 3, reference="promo")
        assert tx.balance_after == 8
        assert await service.get_account_balance("acct-9") == 8

        topups = await service.get_transactions("acct-9", kinds=(TransactionKind.TOPUP,))
        assert [t.amount for t in topups] == [3, 5]

        audits = await service.audit_all_accounts()
        assert [a.account_id for a in audits] == ["acct-9"]
        assert all(a.consistent for a in audits)
        assert (await service.audit_account("acct-9")).ledger_sum == 8

    @pytest.mark.asyncio
    async def test_store_summary_requires_writable_provider(self, session_factory, settings):
        class ExternalSummaries:
            async def get_summary(self, session_id):
                return make_summary(session_id)

        provider = ExternalSummaries()
        assert isinstance(provider, SummaryProvider)
        svc = ReportService(session_factory, make_registry(), settings, summaries=provider)
        with pytest.raises(TypeError):
            await svc.store_summary(make_summary())
