"""Unit tests for the catalog registry and the compatibility matcher."""

from __future__ import annotations

import pytest
from fakes import FakeEngine, FakeRenderer, make_registry
from report_engine.capabilities.mock_engine import MockTestEngine
from report_engine.config import load_settings
from report_engine.errors import DuplicateRegistrationError
from report_engine.models.catalog import EngineDescriptor, OutputFormat, RendererDescriptor, SignalType
from report_engine.registry import build_default_registry, matcher
from report_engine.registry.registry import CatalogRegistry

# ---------------------------------------------------------------------------
# Registration and lookup
# ---------------------------------------------------------------------------


class TestRegistration:
    def test_register_and_get_engine(self):
        registry = make_registry(FakeEngine("engine-x"))
        descriptor = registry.get_engine("engine-x")
        assert descriptor is not None
        assert descriptor.cost_per_analysis == 5

    def test_unknown_ids_return_none(self):
        registry = CatalogRegistry()
        assert registry.get_engine("missing") is None
        assert registry.get_renderer("missing") is None

    def test_duplicate_version_rejected(self):
        registry = make_registry(FakeEngine("engine-x"))
        with pytest.raises(DuplicateRegistrationError):
            registry.register_engine(FakeEngine("engine-x"))

    def test_duplicate_is_a_value_error(self):
        registry = make_registry(FakeRenderer("r1"))
        with pytest.raises(ValueError):
            registry.register_renderer(FakeRenderer("r1"))

    def test_latest_version_wins(self):
        registry = make_registry(
            FakeEngine("engine-x", version="1.2.0", cost=3),
            FakeEngine("engine-x", version="1.10.0", cost=4),
        )
        latest = registry.get_engine("engine-x")
        assert latest is not None
        assert latest.version == "1.10.0"

    def test_specific_version_lookup(self):
        registry = make_registry(
            FakeEngine("engine-x", version="1.0.0"),
            FakeEngine("engine-x", version="2.0.0"),
        )
        pinned = registry.get_engine("engine-x", "1.0.0")
        assert pinned is not None
        assert pinned.version == "1.0.0"

    def test_capability_resolves_descriptor(self):
        engine = FakeEngine("engine-x")
        registry = make_registry(engine)
        descriptor = registry.get_engine("engine-x")
        assert registry.engine_capability(descriptor) is engine

    def test_len_counts_latest_entries(self):
        registry = make_registry(
            FakeEngine("e1"),
            FakeEngine("e1", version="2.0.0"),
            FakeRenderer("r1"),
        )
        assert len(registry) == 2


class TestRetirement:
    def test_retire_falls_back_to_previous_version(self):
        registry = make_registry(
            FakeEngine("engine-x", version="1.0.0"),
            FakeEngine("engine-x", version="2.0.0"),
        )
        assert registry.retire_engine("engine-x", "2.0.0") == 1
        latest = registry.get_engine("engine-x")
        assert latest is not None
        assert latest.version == "1.0.0"

    def test_retire_all_versions(self):
        registry = make_registry(
            FakeEngine("engine-x", version="1.0.0"),
            FakeEngine("engine-x", version="2.0.0"),
        )
        assert registry.retire_engine("engine-x") == 2
        assert registry.get_engine("engine-x") is None
        assert len(registry.list_engines(include_inactive=True)) == 2
        assert all(not e.active for e in registry.list_engines(include_inactive=True))

    def test_retire_unknown_raises(self):
        registry = CatalogRegistry()
        with pytest.raises(KeyError):
            registry.retire_renderer("nope")

    def test_retired_descriptor_is_a_copy(self):
        registry = make_registry(FakeRenderer("r1"))
        before = registry.get_renderer("r1")
        registry.retire_renderer("r1")
        assert before is not None and before.active is True


# ---------------------------------------------------------------------------
# find_compatible
# ---------------------------------------------------------------------------


class TestFindCompatible:
    def test_wildcard_and_explicit_match(self):
        """R1 names the engine, R2 accepts every engine, R3 names another."""
        registry = make_registry(
            FakeEngine("engine-x"),
            FakeRenderer("R1", cost=0, compatible=("engine-x",)),
            FakeRenderer("R2", cost=0, compatible=("*",)),
            FakeRenderer("R3", cost=0, compatible=("engine-y",)),
        )
        ids = [r.id for r in registry.find_compatible("engine-x")]
        assert ids == ["R1", "R2"]

    def test_unknown_engine_returns_empty(self):
        registry = make_registry(FakeRenderer("R2", compatible=("*",)))
        assert registry.find_compatible("engine-z") == []

    def test_retired_engine_returns_empty(self):
        registry = make_registry(FakeEngine("engine-x"), FakeRenderer("R2"))
        registry.retire_engine("engine-x")
        assert registry.find_compatible("engine-x") == []

    def test_recommended_first_then_cost(self):
        registry = make_registry(
            FakeEngine("engine-x", recommended=("pricey",)),
            FakeRenderer("cheap", cost=1),
            FakeRenderer("pricey", cost=9),
            FakeRenderer("mid", cost=4),
        )
        ids = [r.id for r in registry.find_compatible("engine-x")]
        assert ids == ["pricey", "cheap", "mid"]

    def test_global_recommendation_applies_to_every_engine(self):
        registry = make_registry(
            FakeEngine("engine-x"),
            FakeRenderer("a", cost=1),
            FakeRenderer("b", cost=3),
        )
        registry.recommend("b")
        assert [r.id for r in registry.find_compatible("engine-x")] == ["b", "a"]

    def test_equal_cost_ordered_by_id(self):
        registry = make_registry(
            FakeEngine("engine-x"),
            FakeRenderer("zeta", cost=2),
            FakeRenderer("alpha", cost=2),
        )
        assert [r.id for r in registry.find_compatible("engine-x")] == ["alpha", "zeta"]

    def test_deterministic_across_calls(self):
        registry = make_registry(
            FakeEngine("engine-x"),
            *(FakeRenderer(f"r{i}", cost=i % 3) for i in range(8)),
        )
        first = [r.id for r in registry.find_compatible("engine-x")]
        for _ in range(5):
            assert [r.id for r in registry.find_compatible("engine-x")] == first

    def test_only_latest_renderer_version_listed(self):
        registry = make_registry(
            FakeEngine("engine-x"),
            FakeRenderer("r1", version="1.0.0"),
            FakeRenderer("r1", version="1.1.0"),
        )
        result = registry.find_compatible("engine-x")
        assert [(r.id, r.version) for r in result] == [("r1", "1.1.0")]

    def test_organization_scope_filters_other_orgs(self):
        registry = make_registry(
            FakeEngine("engine-x"),
            FakeRenderer("public"),
            FakeRenderer("acme-only", organization_id="acme"),
        )
        assert [r.id for r in registry.find_compatible("engine-x", organization_id="globex")] == ["public"]
        assert {r.id for r in registry.find_compatible("engine-x", organization_id="acme")} == {
            "public",
            "acme-only",
        }

    def test_result_is_a_fresh_list(self):
        registry = make_registry(FakeEngine("engine-x"), FakeRenderer("r1"))
        first = registry.find_compatible("engine-x")
        first.clear()
        assert len(registry.find_compatible("engine-x")) == 1


# ---------------------------------------------------------------------------
# Other matcher queries
# ---------------------------------------------------------------------------


class TestMatcherQueries:
    def test_is_compatible(self):
        registry = make_registry(
            FakeEngine("engine-x"),
            FakeRenderer("R1", compatible=("engine-x",)),
            FakeRenderer("R3", compatible=("engine-y",)),
        )
        assert registry.is_compatible("engine-x", "R1") is True
        assert registry.is_compatible("engine-x", "R3") is False
        assert registry.is_compatible("engine-x", "missing") is False

    def test_select_best_renderer_by_format(self):
        registry = make_registry(
            FakeEngine("engine-x"),
            FakeRenderer("web", cost=1),
            FakeRenderer("export", cost=5, output_format=OutputFormat.JSON),
        )
        best = matcher.select_best_renderer(registry, "engine-x", OutputFormat.JSON)
        assert best is not None and best.id == "export"
        assert matcher.select_best_renderer(registry, "engine-x", OutputFormat.PDF) is None

    def test_find_supported_engines(self):
        registry = make_registry(
            FakeEngine("engine-x"),
            FakeEngine("engine-y"),
            FakeRenderer("R1", compatible=("engine-x",)),
        )
        assert [e.id for e in matcher.find_supported_engines(registry, "R1")] == ["engine-x"]
        assert matcher.find_supported_engines(registry, "missing") == []

    def test_compatibility_matrix(self):
        registry = make_registry(
            FakeEngine("engine-x"),
            FakeEngine("engine-y"),
            FakeRenderer("R1", compatible=("engine-x",)),
            FakeRenderer("R2", compatible=("*",)),
        )
        assert matcher.compatibility_matrix(registry) == {
            "engine-x": ["R1", "R2"],
            "engine-y": ["R2"],
        }

    def test_search_engines_by_channel_and_cost(self):
        registry = make_registry(FakeEngine("eeg-cheap", cost=1), FakeEngine("eeg-pricey", cost=9))
        assert [e.id for e in matcher.search_engines(registry, frozenset({SignalType.EEG}))] == [
            "eeg-cheap",
            "eeg-pricey",
        ]
        assert [e.id for e in matcher.search_engines(registry, max_cost=5)] == ["eeg-cheap"]
        assert matcher.search_engines(registry, frozenset({"ppg"})) == []

    def test_search_engines_hides_other_organizations(self):
        registry = make_registry(
            FakeEngine("eeg-public", cost=1),
            FakeEngine("eeg-acme", cost=2, organization_id="acme"),
        )
        assert [e.id for e in matcher.search_engines(registry)] == ["eeg-public"]
        assert [e.id for e in matcher.search_engines(registry, organization_id="globex")] == ["eeg-public"]
        assert [e.id for e in matcher.search_engines(registry, organization_id="acme")] == [
            "eeg-public",
            "eeg-acme",
        ]
        assert [e.id for e in matcher.search_engines(registry, max_cost=1, organization_id="acme")] == ["eeg-public"]


# ---------------------------------------------------------------------------
# Descriptors and defaults
# ---------------------------------------------------------------------------


class TestDescriptors:
    def test_organization_scope_requires_org_id(self):
        with pytest.raises(ValueError):
            RendererDescriptor(
                id="r",
                version="1",
                output_format=OutputFormat.WEB,
                cost_per_render=0,
                compatible_engine_ids=frozenset({"*"}),
                access_control="organization",
            )

    def test_organization_engine_requires_org_id(self):
        with pytest.raises(ValueError, match="requires organization_id"):
            EngineDescriptor(id="e", version="1", cost_per_analysis=1, access_control="organization")

    def test_engine_available_to(self):
        public = FakeEngine().descriptor
        scoped = FakeEngine(organization_id="acme").descriptor
        assert public.available_to(None) and public.available_to("globex")
        assert scoped.available_to("acme")
        assert not scoped.available_to("globex")
        assert not scoped.available_to(None)

    def test_descriptors_are_frozen(self):
        descriptor = FakeEngine().descriptor
        with pytest.raises(ValueError):
            descriptor.cost_per_analysis = 0  # type: ignore[misc]


class TestDefaultRegistry:
    def test_mock_engine_pairs_with_builtin_renderers(self):
        registry = build_default_registry(load_settings())
        ids = [r.id for r in registry.find_compatible(MockTestEngine().descriptor.id)]
        assert ids == ["basic-web-v1", "json-export-v1"]

    def test_hosted_engines_registered_when_url_set(self):
        registry = build_default_registry(load_settings(remote_engine_url="http://engines.internal"))
        assert registry.get_engine("integrated-advanced-gemini-v1") is not None
        assert registry.get_engine("eeg-advanced-gemini-v1") is not None

    def test_hosted_engines_absent_without_url(self):
        registry = build_default_registry(load_settings())
        assert registry.get_engine("eeg-advanced-gemini-v1") is None
