"""Tests for the built-in engines and renderers and the hosted engine client.

The hosted engine is exercised through ``httpx.MockTransport`` so no
network access is needed.
"""

from __future__ import annotations

import json

import httpx
import pytest
from fakes import make_summary
from report_engine.capabilities.mock_engine import MockTestEngine
from report_engine.capabilities.remote import HOSTED_ENGINE_DESCRIPTORS, RemoteAnalysisEngine
from report_engine.capabilities.renderers import BasicWebRenderer, JsonExportRenderer
from report_engine.errors import EngineError, RendererError
from report_engine.models.analysis import AnalysisInsights, AnalysisResult

EEG_DESCRIPTOR = HOSTED_ENGINE_DESCRIPTORS[0]


def _analysis(**overrides) -> AnalysisResult:
    values = {
        "analysis_id": "analysis-1",
        "engine_id": "eeg-advanced-gemini-v1",
        "engine_version": "1.0.0",
        "overall_score": 81.0,
        "insights": AnalysisInsights(
            summary="Calm <b>and</b> focused",
            recommendations=["Sleep 8h", "Drink water"],
            warnings=["PPG metrics missing."],
        ),
    }
    values.update(overrides)
    return AnalysisResult(**values)


def _remote(handler) -> RemoteAnalysisEngine:
    client = httpx.AsyncClient(base_url="http://engines.test", transport=httpx.MockTransport(handler))
    return RemoteAnalysisEngine(EEG_DESCRIPTOR, base_url="http://engines.test", client=client)


# ---------------------------------------------------------------------------
# Mock engine
# ---------------------------------------------------------------------------


class TestMockEngine:
    @pytest.mark.asyncio
    async def test_scores_are_deterministic(self):
        engine = MockTestEngine()
        first = await engine.analyze(make_summary(), {})
        second = await engine.analyze(make_summary(), {})
        assert first.overall_score == second.overall_score
        assert first.analysis_id != second.analysis_id
        assert 60 <= first.overall_score <= 100

    @pytest.mark.asyncio
    async def test_validate_warns_about_missing_signals(self):
        report = await MockTestEngine().validate(make_summary())
        assert report.is_valid
        assert "PPG metrics missing." in report.warnings

    @pytest.mark.asyncio
    async def test_language_option_reaches_insights(self):
        result = await MockTestEngine().analyze(make_summary(), {"language": "ko"})
        assert "(ko)" in result.insights.summary
        assert result.metrics["mock_engine"] is True


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------


class TestRenderers:
    @pytest.mark.asyncio
    async def test_web_report_escapes_content(self):
        artifact = await BasicWebRenderer().render(_analysis(), {"title": "Report <x>"})
        assert artifact.mime_type.startswith("text/html")
        assert "Calm &lt;b&gt;and&lt;/b&gt; focused" in artifact.content
        assert "Report &lt;x&gt;" in artifact.content
        assert "<li>Sleep 8h</li>" in artifact.content
        assert "Notes" in artifact.content
        assert artifact.size_bytes == len(artifact.content.encode("utf-8"))

    @pytest.mark.asyncio
    async def test_web_report_without_warnings(self):
        analysis = _analysis(insights=AnalysisInsights(summary="ok"))
        artifact = await BasicWebRenderer().render(analysis, {})
        assert 'class="warnings"' not in artifact.content

    @pytest.mark.asyncio
    async def test_recommendations_and_engine_ids_are_escaped(self):
        analysis = _analysis(
            engine_id="<script>alert(1)</script>",
            insights=AnalysisInsights(recommendations=["<img src=x onerror=alert(1)>"]),
        )
        artifact = await BasicWebRenderer().render(analysis, {"language": "en\"><script>"})
        assert "<script>" not in artifact.content
        assert "<img" not in artifact.content
        assert "&lt;img src=x onerror=alert(1)&gt;" in artifact.content

    @pytest.mark.asyncio
    async def test_missing_template_is_renderer_error(self):
        renderer = BasicWebRenderer(template_name="missing.html.j2")
        with pytest.raises(RendererError, match="template"):
            await renderer.render(_analysis(), {})

    @pytest.mark.asyncio
    async def test_json_export(self):
        artifact = await JsonExportRenderer().render(_analysis(), {})
        payload = json.loads(artifact.content)
        assert payload["schema"] == "linkband.report/v1"
        assert payload["analysis"]["overall_score"] == 81.0
        assert artifact.output_format == "json"


# ---------------------------------------------------------------------------
# Hosted engine client
# ---------------------------------------------------------------------------


class TestRemoteEngine:
    @pytest.mark.asyncio
    async def test_analyze_posts_summary_and_options(self):
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_analysis().model_dump(mode="json"))

        engine = _remote(handler)
        result = await engine.analyze(make_summary(), {"language": "en"})
        await engine.close()

        assert seen["path"] == "/engines/eeg-advanced-gemini-v1/analyze"
        assert seen["body"]["summary"]["session_id"] == "session-1"
        assert seen["body"]["options"] == {"language": "en"}
        assert result.overall_score == 81.0

    @pytest.mark.asyncio
    async def test_validate_parses_report(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"is_valid": False, "errors": ["too short"]})

        report = await _remote(handler).validate(make_summary())
        assert report.is_valid is False
        assert report.errors == ["too short"]

    @pytest.mark.asyncio
    async def test_http_error_becomes_engine_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="overloaded")

        with pytest.raises(EngineError, match="HTTP 503"):
            await _remote(handler).analyze(make_summary(), {})

    @pytest.mark.asyncio
    async def test_connection_error_becomes_engine_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(EngineError, match="unreachable"):
            await _remote(handler).analyze(make_summary(), {})

    @pytest.mark.asyncio
    async def test_malformed_body_becomes_engine_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"unexpected": True})

        with pytest.raises(EngineError, match="malformed"):
            await _remote(handler).analyze(make_summary(), {})

    @pytest.mark.asyncio
    async def test_invalid_json_becomes_engine_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"<html>gateway</html>")

        with pytest.raises(EngineError, match="invalid JSON"):
            await _remote(handler).analyze(make_summary(), {})

    def test_bearer_header_set_from_secret(self):
        engine = RemoteAnalysisEngine(EEG_DESCRIPTOR, base_url="http://engines.test/", shared_secret="s3cret")
        assert engine._client.headers["Authorization"] == "Bearer s3cret"
