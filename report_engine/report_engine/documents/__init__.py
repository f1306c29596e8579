"""Document persistence for measurement summaries and rendered artifacts."""

from report_engine.documents.store import DocumentStore, Filter, FilterOp, SqlDocumentStore, apply_query
from report_engine.documents.summaries import SUMMARY_COLLECTION, DocumentSummaryProvider, SummaryProvider

__all__ = [
    "SUMMARY_COLLECTION",
    "DocumentStore",
    "DocumentSummaryProvider",
    "Filter",
    "FilterOp",
    "SqlDocumentStore",
    "SummaryProvider",
    "apply_query",
]
