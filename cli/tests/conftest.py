"""Shared fixtures for CLI tests.

Every command runs against a throwaway SQLite file passed through
``--database-url`` so tests never touch a developer's configured database.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop REPORTS_* variables that would change the default registry."""
    for name in ("REPORTS_DATABASE_URL", "REPORTS_REMOTE_ENGINE_URL", "REPORTS_ENV"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def db_args(tmp_path: Path) -> list[str]:
    return ["--database-url", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"]


@pytest.fixture
def summary_file(tmp_path: Path) -> Path:
    path = tmp_path / "summaries.json"
    path.write_text(
        json.dumps(
            [
                {
                    "session_id": "session-1",
                    "subject_id": "subject-1",
                    "quality_score": 85.0,
                    "per_signal_metrics": {"eeg": {"alpha": 0.42}, "ppg": {"hr": 64}},
                },
                {
                    "session_id": "session-2",
                    "subject_id": "subject-1",
                    "quality_score": 3.0,
                    "per_signal_metrics": {"eeg": {"alpha": 0.1}},
                },
            ]
        ),
        encoding="utf-8",
    )
    return path
