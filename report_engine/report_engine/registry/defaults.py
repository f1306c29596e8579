"""Registry populated with the built-in engines and renderers."""

from __future__ import annotations

import logging

from report_engine.capabilities.mock_engine import MockTestEngine
from report_engine.capabilities.remote import HOSTED_ENGINE_DESCRIPTORS, RemoteAnalysisEngine
from report_engine.capabilities.renderers import BasicWebRenderer, JsonExportRenderer
from report_engine.config import Settings
from report_engine.registry.registry import CatalogRegistry

logger = logging.getLogger(__name__)


def build_default_registry(settings: Settings) -> CatalogRegistry:
    """Register the mock engine, the built-in renderers and, when
    ``remote_engine_url`` is configured, the hosted analysis engines.
    """
    registry = CatalogRegistry()
    registry.register_engine(MockTestEngine())
    registry.register_renderer(BasicWebRenderer())
    registry.register_renderer(JsonExportRenderer())
    registry.recommend("basic-web-v1")

    if settings.remote_engine_url:
        secret = settings.remote_engine_secret.get_secret_value() if settings.remote_engine_secret else None
        for descriptor in HOSTED_ENGINE_DESCRIPTORS:
            registry.register_engine(
                RemoteAnalysisEngine(
                    descriptor,
                    base_url=settings.remote_engine_url,
                    timeout=descriptor.timeout_seconds or settings.engine_timeout_seconds,
                    shared_secret=secret,
                )
            )
        logger.info(
            "Registered %d hosted engine(s) at %s",
            len(HOSTED_ENGINE_DESCRIPTORS),
            settings.remote_engine_url,
        )
    return registry
