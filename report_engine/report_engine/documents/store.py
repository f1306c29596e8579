"""Collection-scoped document store.

The pipeline persists measurement summaries and rendered artifacts through
the :class:`DocumentStore` protocol.  Queries support equality and range
filters; filtering and sorting run client-side so any backend that can list
a collection satisfies the contract.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from report_engine.state.database import session_scope
from report_engine.state.repository import DocumentRepository

logger = logging.getLogger(__name__)


class FilterOp(str, Enum):
    EQ = "=="
    NE = "!="
    LT = "<"
    LTE = "<="
    GT = ">"
    GTE = ">="
    IN = "in"


_OPERATORS: dict[FilterOp, Callable[[Any, Any], bool]] = {
    FilterOp.EQ: lambda a, b: a == b,
    FilterOp.NE: lambda a, b: a != b,
    FilterOp.LT: lambda a, b: a < b,
    FilterOp.LTE: lambda a, b: a <= b,
    FilterOp.GT: lambda a, b: a > b,
    FilterOp.GTE: lambda a, b: a >= b,
    FilterOp.IN: lambda a, b: a in b,
}

_MISSING = object()


@dataclass(frozen=True)
class Filter:
    """A single ``field op value`` predicate.  ``field`` may be dotted."""

    field: str
    op: FilterOp
    value: Any

    def matches(self, doc: dict[str, Any]) -> bool:
        actual = _lookup(doc, self.field)
        if actual is _MISSING or actual is None:
            return False
        try:
            return _OPERATORS[self.op](actual, self.value)
        except TypeError:
            # Range comparison across incompatible types never matches.
            return False


def _lookup(doc: dict[str, Any], dotted: str) -> Any:
    current: Any = doc
    for part in dotted.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def apply_query(
    docs: Sequence[dict[str, Any]],
    filters: Sequence[Filter] = (),
    order_by: str | None = None,
    descending: bool = False,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """Filter, sort and truncate *docs* in memory.

    Documents missing the ``order_by`` field sort last regardless of
    direction.
    """
    matched = [doc for doc in docs if all(f.matches(doc) for f in filters)]
    if order_by is not None:
        present = [d for d in matched if _lookup(d, order_by) not in (_MISSING, None)]
        absent = [d for d in matched if _lookup(d, order_by) in (_MISSING, None)]
        present.sort(key=lambda d: _lookup(d, order_by), reverse=descending)
        matched = present + absent
    if limit is not None:
        matched = matched[:limit]
    return matched


@runtime_checkable
class DocumentStore(Protocol):
    async def put(self, collection: str, doc_id: str, doc: dict[str, Any]) -> None: ...

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None: ...

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...


class SqlDocumentStore:
    """:class:`DocumentStore` backed by the ``documents`` table.

    Each operation runs in its own short transaction.  Query results include
    the document id under ``"_id"``.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def put(self, collection: str, doc_id: str, doc: dict[str, Any]) -> None:
        async with session_scope(self._session_factory) as session:
            await DocumentRepository(session).put(collection, doc_id, doc)
        logger.debug("Stored document %s/%s", collection, doc_id)

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        async with session_scope(self._session_factory) as session:
            return await DocumentRepository(session).get(collection, doc_id)

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        async with session_scope(self._session_factory) as session:
            rows = await DocumentRepository(session).list_collection(collection)
        docs = [{**body, "_id": doc_id} for doc_id, body in rows]
        return apply_query(docs, filters, order_by=order_by, descending=descending, limit=limit)
