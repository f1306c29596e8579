"""Domain models for the report pipeline."""

from report_engine.models.analysis import (
    AnalysisInsights,
    AnalysisResult,
    MeasurementSummary,
    RenderedArtifact,
    ValidationReport,
)
from report_engine.models.catalog import (
    WILDCARD,
    AccessControl,
    EngineDescriptor,
    OutputFormat,
    RendererDescriptor,
    SignalType,
)
from report_engine.models.job import JobStage, ReportJob, RequestContext
from report_engine.models.ledger import (
    CreditAccount,
    CreditTransaction,
    LedgerAudit,
    Reservation,
    ReservationStatus,
    TransactionKind,
)
from report_engine.models.sharing import ShareLink, SubjectBinding, SubjectBindingKind

__all__ = [
    "WILDCARD",
    "AccessControl",
    "AnalysisInsights",
    "AnalysisResult",
    "CreditAccount",
    "CreditTransaction",
    "EngineDescriptor",
    "JobStage",
    "LedgerAudit",
    "MeasurementSummary",
    "OutputFormat",
    "RenderedArtifact",
    "RendererDescriptor",
    "ReportJob",
    "RequestContext",
    "Reservation",
    "ReservationStatus",
    "ShareLink",
    "SignalType",
    "SubjectBinding",
    "SubjectBindingKind",
    "TransactionKind",
    "ValidationReport",
]
