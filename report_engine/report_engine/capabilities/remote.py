"""HTTP client for analysis engines hosted as separate services.

The hosted service exposes, per engine id::

    POST /engines/{engine_id}/validate   -> ValidationReport JSON
    POST /engines/{engine_id}/analyze    -> AnalysisResult JSON

Unlike the read-only catalog calls elsewhere, failures here are raised as
:class:`EngineError` so the pipeline can retry once and then refund.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from report_engine.capabilities.base import AnalysisEngine
from report_engine.errors import EngineError
from report_engine.models.analysis import AnalysisResult, MeasurementSummary, ValidationReport
from report_engine.models.catalog import EngineDescriptor, SignalType

logger = logging.getLogger(__name__)

# Engines served by the hosted analysis service.
HOSTED_ENGINE_DESCRIPTORS: tuple[EngineDescriptor, ...] = (
    EngineDescriptor(
        id="eeg-advanced-gemini-v1",
        version="1.0.0",
        name="EEG advanced analysis",
        description="Stress, focus and relaxation analysis of EEG band powers.",
        cost_per_analysis=5,
        supported_data_types=frozenset({SignalType.EEG}),
        quality_threshold=40.0,
        timeout_seconds=120.0,
        recommended_renderers=("basic-web-v1",),
    ),
    EngineDescriptor(
        id="ppg-advanced-gemini-v1",
        version="1.0.0",
        name="PPG advanced analysis",
        description="Heart rate variability and autonomic balance analysis.",
        cost_per_analysis=5,
        supported_data_types=frozenset({SignalType.PPG}),
        quality_threshold=40.0,
        timeout_seconds=120.0,
        recommended_renderers=("basic-web-v1",),
    ),
    EngineDescriptor(
        id="integrated-advanced-gemini-v1",
        version="1.0.0",
        name="Integrated advanced analysis",
        description="Combined EEG, PPG and motion analysis.",
        cost_per_analysis=10,
        supported_data_types=frozenset({SignalType.EEG, SignalType.PPG, SignalType.ACC}),
        quality_threshold=60.0,
        timeout_seconds=180.0,
        recommended_renderers=("basic-web-v1",),
    ),
)


class RemoteAnalysisEngine(AnalysisEngine):
    """Thin async wrapper around a hosted engine endpoint.

    Parameters
    ----------
    descriptor:
        Catalog metadata of the hosted engine.
    base_url:
        Root URL of the analysis service.
    timeout:
        Transport timeout in seconds.  The pipeline applies its own
        per-stage timeout on top of this.
    shared_secret:
        Bearer token for the analysis service.  Requests are sent without
        an auth header when empty.
    client:
        Pre-built ``httpx.AsyncClient`` (tests inject a mock transport).
    """

    def __init__(
        self,
        descriptor: EngineDescriptor,
        base_url: str,
        timeout: float = 120.0,
        shared_secret: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._descriptor = descriptor
        if client is None:
            headers: dict[str, str] = {"Content-Type": "application/json"}
            if shared_secret:
                headers["Authorization"] = f"Bearer {shared_secret}"
            client = httpx.AsyncClient(
                base_url=base_url.rstrip("/"),
                timeout=httpx.Timeout(timeout),
                headers=headers,
            )
        self._client = client

    @property
    def descriptor(self) -> EngineDescriptor:
        return self._descriptor

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    async def validate(self, summary: MeasurementSummary) -> ValidationReport:
        body = await self._post("validate", {"summary": summary.model_dump(mode="json")})
        try:
            return ValidationReport.model_validate(body)
        except PydanticValidationError as exc:
            raise EngineError(f"Engine {self._descriptor.id} returned a malformed validation report") from exc

    async def analyze(self, summary: MeasurementSummary, options: dict[str, Any]) -> AnalysisResult:
        body = await self._post(
            "analyze",
            {"summary": summary.model_dump(mode="json"), "options": options},
        )
        try:
            return AnalysisResult.model_validate(body)
        except PydanticValidationError as exc:
            raise EngineError(f"Engine {self._descriptor.id} returned a malformed analysis") from exc

    async def _post(self, action: str, payload: dict[str, Any]) -> dict[str, Any]:
        path = f"/engines/{self._descriptor.id}/{action}"
        try:
            response = await self._client.post(path, json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Analysis engine returned %d for %s: %s",
                exc.response.status_code,
                path,
                exc.response.text[:500],
            )
            raise EngineError(f"Engine {self._descriptor.id} returned HTTP {exc.response.status_code}") from exc
        except httpx.RequestError as exc:
            logger.warning("Analysis engine request to %s failed: %s", path, str(exc))
            raise EngineError(f"Engine {self._descriptor.id} unreachable: {exc}") from exc
        except ValueError as exc:
            raise EngineError(f"Engine {self._descriptor.id} returned invalid JSON") from exc
