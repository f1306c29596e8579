"""Built-in report renderers: a standalone HTML page and a JSON export."""

from __future__ import annotations

import json
import uuid
from typing import Any

from jinja2 import Environment, PackageLoader, TemplateError, select_autoescape
from report_engine.capabilities.base import ReportRenderer
from report_engine.errors import RendererError
from report_engine.models.analysis import AnalysisResult, RenderedArtifact
from report_engine.models.catalog import WILDCARD, OutputFormat, RendererDescriptor

BASIC_WEB_DESCRIPTOR = RendererDescriptor(
    id="basic-web-v1",
    version="1.0.0",
    name="Basic web report",
    description="Single-page HTML report suitable for mobile and desktop browsers.",
    output_format=OutputFormat.WEB,
    cost_per_render=0,
    compatible_engine_ids=frozenset({WILDCARD}),
)

JSON_EXPORT_DESCRIPTOR = RendererDescriptor(
    id="json-export-v1",
    version="1.0.0",
    name="JSON export",
    description="Machine-readable export of the analysis for downstream systems.",
    output_format=OutputFormat.JSON,
    cost_per_render=0,
    compatible_engine_ids=frozenset({WILDCARD}),
)

_env = Environment(
    loader=PackageLoader("report_engine", "templates"),
    autoescape=select_autoescape(["html", "html.j2"]),
    keep_trailing_newline=True,
    trim_blocks=True,
    lstrip_blocks=True,
)


class BasicWebRenderer(ReportRenderer):
    """Renders an analysis as one self-contained HTML document.

    The page comes from the packaged ``templates/`` directory; autoescaping
    covers every value taken from the analysis.
    """

    def __init__(
        self,
        descriptor: RendererDescriptor = BASIC_WEB_DESCRIPTOR,
        template_name: str = "basic_web.html.j2",
    ) -> None:
        self._descriptor = descriptor
        self._template_name = template_name

    @property
    def descriptor(self) -> RendererDescriptor:
        return self._descriptor

    async def render(self, analysis: AnalysisResult, options: dict[str, Any]) -> RenderedArtifact:
        try:
            body = _env.get_template(self._template_name).render(
                lang=str(options.get("language", "en")),
                title=str(options.get("title", "Health report")),
                analysis=analysis,
                insights=analysis.insights,
            )
        except TemplateError as exc:
            raise RendererError(f"HTML template rendering failed: {exc}") from exc

        return RenderedArtifact(
            id=uuid.uuid4().hex,
            renderer_id=self._descriptor.id,
            renderer_version=self._descriptor.version,
            output_format=self._descriptor.output_format.value,
            mime_type="text/html; charset=utf-8",
            content=body,
            size_bytes=len(body.encode("utf-8")),
        )


class JsonExportRenderer(ReportRenderer):
    """Serialises the analysis as indented, key-sorted JSON."""

    def __init__(self, descriptor: RendererDescriptor = JSON_EXPORT_DESCRIPTOR) -> None:
        self._descriptor = descriptor

    @property
    def descriptor(self) -> RendererDescriptor:
        return self._descriptor

    async def render(self, analysis: AnalysisResult, options: dict[str, Any]) -> RenderedArtifact:
        payload = {
            "schema": "linkband.report/v1",
            "analysis": analysis.model_dump(mode="json"),
        }
        content = json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False)
        return RenderedArtifact(
            id=uuid.uuid4().hex,
            renderer_id=self._descriptor.id,
            renderer_version=self._descriptor.version,
            output_format=self._descriptor.output_format.value,
            mime_type="application/json",
            content=content,
            size_bytes=len(content.encode("utf-8")),
        )
