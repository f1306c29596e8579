"""Analysis engine and report renderer capabilities."""

from report_engine.capabilities.base import AnalysisEngine, ReportRenderer
from report_engine.capabilities.mock_engine import MOCK_ENGINE_DESCRIPTOR, MockTestEngine
from report_engine.capabilities.remote import HOSTED_ENGINE_DESCRIPTORS, RemoteAnalysisEngine
from report_engine.capabilities.renderers import (
    BASIC_WEB_DESCRIPTOR,
    JSON_EXPORT_DESCRIPTOR,
    BasicWebRenderer,
    JsonExportRenderer,
)

__all__ = [
    "BASIC_WEB_DESCRIPTOR",
    "HOSTED_ENGINE_DESCRIPTORS",
    "JSON_EXPORT_DESCRIPTOR",
    "MOCK_ENGINE_DESCRIPTOR",
    "AnalysisEngine",
    "BasicWebRenderer",
    "JsonExportRenderer",
    "MockTestEngine",
    "RemoteAnalysisEngine",
    "ReportRenderer",
]
