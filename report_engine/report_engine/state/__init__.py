"""State persistence layer (PostgreSQL in production, SQLite locally)."""

from report_engine.state.database import (
    create_tables,
    get_engine,
    get_local_engine,
    get_session_factory,
    session_scope,
)
from report_engine.state.repository import DocumentRepository, JobRepository, ShareLinkRepository

__all__ = [
    "DocumentRepository",
    "JobRepository",
    "ShareLinkRepository",
    "create_tables",
    "get_engine",
    "get_local_engine",
    "get_session_factory",
    "session_scope",
]
