"""Tests for settings loading and validation."""

from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError
from report_engine.config import PlatformEnv, Settings, load_settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("REPORTS_DATABASE_URL", raising=False)
        settings = Settings(_env_file=None)
        assert settings.env == PlatformEnv.DEV
        assert settings.share_default_expiry_days == 30
        assert settings.share_max_expiry_days == 90
        assert settings.share_default_max_access_count == 100
        assert settings.share_max_access_count == 1000
        assert settings.remote_engine_url is None

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("REPORTS_ENGINE_TIMEOUT_SECONDS", "12.5")
        monkeypatch.setenv("REPORTS_ENV", "staging")
        settings = load_settings()
        assert settings.engine_timeout_seconds == 12.5
        assert settings.env == PlatformEnv.STAGING

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("REPORTS_STALE_JOB_SECONDS", "60")
        assert load_settings(stale_job_seconds=120).stale_job_seconds == 120

    def test_secret_not_in_repr(self):
        settings = load_settings(share_binding_secret="very-private")
        assert "very-private" not in repr(settings)
        assert settings.share_binding_secret.get_secret_value() == "very-private"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"share_default_expiry_days": 120},
            {"share_default_max_access_count": 5000},
            {"engine_timeout_seconds": 0},
            {"organization_monthly_analysis_limits": {"acme": -1}},
        ],
    )
    def test_invalid_combinations_rejected(self, overrides):
        with pytest.raises(ValidationError):
            load_settings(**overrides)

    def test_monthly_limits_from_environment(self, monkeypatch):
        monkeypatch.setenv("REPORTS_ORGANIZATION_MONTHLY_ANALYSIS_LIMITS", '{"acme": 50, "globex": 0}')
        settings = load_settings()
        assert settings.organization_monthly_analysis_limits == {"acme": 50, "globex": 0}

    def test_dev_secret_warned_outside_dev(self, caplog):
        with caplog.at_level(logging.WARNING, logger="report_engine.config"):
            load_settings(env="prod")
        assert "REPORTS_SHARE_BINDING_SECRET" in caplog.text
