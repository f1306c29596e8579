"""Shared fixtures for report engine tests.

Every database-backed fixture uses a temporary SQLite *file* (not
``:memory:``) so that concurrent sessions get their own connections, as
they would against PostgreSQL.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from report_engine.config import Settings, load_settings
from report_engine.documents.store import SqlDocumentStore
from report_engine.documents.summaries import DocumentSummaryProvider
from report_engine.models.job import RequestContext
from report_engine.state.database import create_tables, get_local_engine, get_session_factory


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return load_settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'reports.db'}",
        engine_timeout_seconds=1.0,
        renderer_timeout_seconds=1.0,
        engine_retry_delay_seconds=0.01,
        share_binding_secret="test-binding-secret",
    )


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = get_local_engine(tmp_path / "reports.db")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(db_engine):
    return get_session_factory(db_engine)


@pytest.fixture()
def documents(session_factory) -> SqlDocumentStore:
    return SqlDocumentStore(session_factory)


@pytest.fixture()
def summaries(documents) -> DocumentSummaryProvider:
    return DocumentSummaryProvider(documents)


@pytest.fixture()
def context() -> RequestContext:
    return RequestContext(account_id="acct-1", requester_id="user-1")
