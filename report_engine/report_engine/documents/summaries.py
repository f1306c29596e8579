"""Measurement summary lookup over the document store."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from pydantic import ValidationError as PydanticValidationError

from report_engine.documents.store import DocumentStore
from report_engine.errors import NotFoundError
from report_engine.models.analysis import MeasurementSummary

logger = logging.getLogger(__name__)

SUMMARY_COLLECTION = "measurement_summaries"


@runtime_checkable
class SummaryProvider(Protocol):
    async def get_summary(self, session_id: str) -> MeasurementSummary: ...


class DocumentSummaryProvider:
    """Reads summaries written by the acquisition pipeline.

    A document that exists but does not parse as a summary is reported as
    missing; the pipeline has nothing usable to analyse either way.
    """

    def __init__(self, store: DocumentStore, collection: str = SUMMARY_COLLECTION) -> None:
        self._store = store
        self._collection = collection

    async def get_summary(self, session_id: str) -> MeasurementSummary:
        doc = await self._store.get(self._collection, session_id)
        if doc is None:
            raise NotFoundError(f"Measurement summary {session_id!r} not found")
        try:
            return MeasurementSummary.model_validate({"session_id": session_id, **doc})
        except PydanticValidationError as exc:
            logger.warning("Malformed measurement summary %s: %s", session_id, exc)
            raise NotFoundError(f"Measurement summary {session_id!r} is malformed") from exc

    async def save_summary(self, summary: MeasurementSummary) -> None:
        """Store *summary*; used by importers and test fixtures."""
        await self._store.put(
            self._collection,
            summary.session_id,
            summary.model_dump(mode="json", exclude={"session_id"}),
        )
