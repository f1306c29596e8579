"""Report generation pipeline."""

from report_engine.pipeline.orchestrator import ARTIFACT_COLLECTION, ReportOrchestrator

__all__ = ["ARTIFACT_COLLECTION", "ReportOrchestrator"]
