"""Abstract base classes for analysis engines and report renderers.

Every engine and renderer must subclass one of these and describe itself
through a frozen descriptor.  Implementations should keep no per-request
state; everything they need arrives as arguments.
"""

from __future__ import annotations

import abc
from typing import Any

from report_engine.models.analysis import AnalysisResult, MeasurementSummary, RenderedArtifact, ValidationReport
from report_engine.models.catalog import EngineDescriptor, RendererDescriptor


class AnalysisEngine(abc.ABC):
    """Turns a measurement summary into a structured analysis."""

    @property
    @abc.abstractmethod
    def descriptor(self) -> EngineDescriptor:
        """Catalog metadata for this engine version."""

    @abc.abstractmethod
    async def validate(self, summary: MeasurementSummary) -> ValidationReport:
        """Check whether *summary* is usable by this engine.

        Must not consume credits or call paid upstream services.
        """

    @abc.abstractmethod
    async def analyze(self, summary: MeasurementSummary, options: dict[str, Any]) -> AnalysisResult:
        """Analyse *summary*.

        Raises
        ------
        EngineError
            When the analysis cannot be produced.  The pipeline retries once.
        """


class ReportRenderer(abc.ABC):
    """Turns an analysis into a deliverable artifact."""

    @property
    @abc.abstractmethod
    def descriptor(self) -> RendererDescriptor:
        """Catalog metadata for this renderer version."""

    @abc.abstractmethod
    async def render(self, analysis: AnalysisResult, options: dict[str, Any]) -> RenderedArtifact:
        """Render *analysis*.

        Raises
        ------
        RendererError
            When the artifact cannot be produced.  The pipeline never retries.
        """
