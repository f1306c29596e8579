"""Shared fixtures for report API tests.

The app runs against a real :class:`ReportService` on a temporary SQLite
file; only the service, database engine and settings dependencies are
overridden.  Requests carry the gateway identity headers of ``acct-1``.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from fakes import FakeEngine, FakeRenderer, make_summary
from httpx import ASGITransport, AsyncClient
from report_engine.config import Settings, load_settings
from report_engine.registry.defaults import build_default_registry
from report_engine.service import ReportService
from report_engine.state.database import create_tables, get_local_engine, get_session_factory

from api.config import APISettings
from api.dependencies import get_db_engine, get_service, get_settings
from api.main import create_app

ACCOUNT_HEADERS: dict[str, str] = {"X-Account-ID": "acct-1", "X-Requester-ID": "user-1"}


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture()
def test_settings() -> APISettings:
    return APISettings(
        host="127.0.0.1",
        port=8000,
        debug=True,
        platform_env="dev",
        cors_origins=["http://localhost:3000"],
        reap_stale_jobs_on_startup=False,
    )


@pytest.fixture()
def report_settings(tmp_path) -> Settings:
    return load_settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        engine_timeout_seconds=1.0,
        renderer_timeout_seconds=1.0,
        engine_retry_delay_seconds=0.01,
        share_binding_secret="api-test-secret",
        share_public_base_url="https://reports.test/s",
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def db_engine(tmp_path):
    engine = get_local_engine(tmp_path / "api.db")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def service(db_engine, report_settings):
    """Default catalog plus a paid engine (5 credits) and renderer (2 credits)."""
    registry = build_default_registry(report_settings)
    registry.register_engine(FakeEngine("eeg-test-v1", cost=5))
    registry.register_renderer(FakeRenderer("web-test-v1", cost=2))
    registry.register_renderer(FakeRenderer("acme-web-v1", cost=1, organization_id="acme"))
    svc = ReportService(get_session_factory(db_engine), registry, report_settings)
    await svc.store_summary(make_summary())
    yield svc
    await svc.aclose(cancel=True)


# ---------------------------------------------------------------------------
# App and client
# ---------------------------------------------------------------------------


@pytest.fixture()
def app(test_settings: APISettings, service: ReportService, db_engine):
    """Create a FastAPI app wired to the test service.

    ``ASGITransport`` does not run the lifespan, so nothing here touches
    the global service or the environment's database.
    """
    application = create_app()
    application.dependency_overrides[get_settings] = lambda: test_settings
    application.dependency_overrides[get_service] = lambda: service
    application.dependency_overrides[get_db_engine] = lambda: db_engine
    return application


@pytest_asyncio.fixture()
async def client(app) -> AsyncClient:
    """Yield an async httpx client bound to the test app, identified as ``acct-1``."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", headers=ACCOUNT_HEADERS) as ac:
        yield ac


@pytest_asyncio.fixture()
async def completed_job(client: AsyncClient, service: ReportService) -> str:
    """Fund ``acct-1`` and run one paid report job to completion."""
    await service.open_account("acct-1", 10)
    resp = await client.post(
        "/reports/jobs",
        json={"session_id": "session-1", "engine_id": "eeg-test-v1", "renderer_id": "web-test-v1"},
    )
    assert resp.status_code == 202, resp.text
    job_id = resp.json()["job_id"]
    job = await service.orchestrator.wait_for(job_id, timeout=5)
    assert job.stage.value == "COMPLETED"
    return job_id
