"""Tests for cli/cli/display.py -- Rich output formatting.

Output is captured via a Console writing to a StringIO buffer rather than
stderr.
"""

from __future__ import annotations

import io
from datetime import UTC, datetime

import pytest
from report_engine.capabilities.mock_engine import MOCK_ENGINE_DESCRIPTOR
from report_engine.capabilities.renderers import BasicWebRenderer
from report_engine.models.catalog import AccessControl
from report_engine.models.job import JobStage, ReportJob
from report_engine.models.ledger import CreditTransaction, LedgerAudit, TransactionKind
from rich.console import Console

from cli.display import (
    _KIND_COLOURS,
    _STAGE_COLOURS,
    _coloured,
    display_audit,
    display_engines,
    display_job,
    display_matrix,
    display_renderers,
    display_transactions,
)


def _capture_console() -> tuple[Console, io.StringIO]:
    buf = io.StringIO()
    console = Console(file=buf, no_color=True, highlight=False, width=160)
    return console, buf


def _make_job(**overrides) -> ReportJob:
    fields = {
        "id": "job-1",
        "account_id": "acct-1",
        "requester_id": "user-1",
        "session_id": "session-1",
        "engine_id": "mock-test-v1",
        "engine_version": "1.0.0",
        "renderer_id": "basic-web-v1",
        "stage": JobStage.COMPLETED,
        "reserved_amount": 7,
        "attempts": 1,
        "stage_timestamps": {"QUEUED": "2026-01-05T10:00:00+00:00"},
        "created_at": datetime(2026, 1, 5, 10, 0, tzinfo=UTC),
    }
    fields.update(overrides)
    return ReportJob(**fields)


# ---------------------------------------------------------------------------
# Colours
# ---------------------------------------------------------------------------


class TestColoured:
    def test_known_stage(self) -> None:
        assert _coloured("FAILED", _STAGE_COLOURS) == "[red]FAILED[/red]"

    def test_unknown_value_uses_white(self) -> None:
        assert _coloured("MYSTERY", _STAGE_COLOURS) == "[white]MYSTERY[/white]"

    def test_every_stage_and_kind_mapped(self) -> None:
        assert set(_STAGE_COLOURS) == {s.value for s in JobStage}
        assert set(_KIND_COLOURS) == {k.value for k in TransactionKind}


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class TestCatalogDisplay:
    def test_engines_table(self) -> None:
        console, buf = _capture_console()
        display_engines(console, [MOCK_ENGINE_DESCRIPTOR])
        out = buf.getvalue()
        assert "Engines (1)" in out
        assert "mock-test-v1" in out
        assert "acc, eeg, ppg" in out

    def test_empty_engines(self) -> None:
        console, buf = _capture_console()
        display_engines(console, [])
        assert "No engines registered" in buf.getvalue()

    def test_renderer_access_shows_organization(self) -> None:
        descriptor = BasicWebRenderer().descriptor.model_copy(
            update={"access_control": AccessControl.ORGANIZATION, "organization_id": "acme"}
        )
        console, buf = _capture_console()
        display_renderers(console, [descriptor], title="Scoped")
        out = buf.getvalue()
        assert "Scoped (1)" in out
        assert "(acme)" in out

    def test_matrix_marks_orphans(self) -> None:
        console, buf = _capture_console()
        display_matrix(console, {"mock-test-v1": ["basic-web-v1"], "lonely-v1": []})
        out = buf.getvalue()
        assert "basic-web-v1" in out
        assert "none" in out


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class TestLedgerDisplay:
    def test_transactions(self) -> None:
        tx = CreditTransaction(
            id=3,
            account_id="acct-1",
            kind=TransactionKind.RESERVE,
            amount=7,
            amount_signed=-7,
            balance_after=3,
            related_job_id="job-1",
            created_at=datetime(2026, 1, 5, 10, 0, tzinfo=UTC),
        )
        console, buf = _capture_console()
        display_transactions(console, "acct-1", [tx])
        out = buf.getvalue()
        assert "RESERVE" in out
        assert "-7" in out
        assert "job-1" in out
        assert "2026-01-05 10:00:00" in out

    def test_no_transactions(self) -> None:
        console, buf = _capture_console()
        display_transactions(console, "acct-1", [])
        assert "No transactions for acct-1" in buf.getvalue()

    @pytest.mark.parametrize(
        ("balance", "expected"),
        [(5, "all consistent"), (4, "1 inconsistent")],
    )
    def test_audit_summary(self, balance: int, expected: str) -> None:
        audit = LedgerAudit(account_id="acct-1", balance=balance, ledger_sum=5, transaction_count=2, open_reservations=0)
        console, buf = _capture_console()
        display_audit(console, [audit])
        assert expected in buf.getvalue()


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class TestJobDisplay:
    def test_completed_job(self) -> None:
        console, buf = _capture_console()
        display_job(console, _make_job(rendered_artifact_ref="artifact-1"))
        out = buf.getvalue()
        assert "job-1" in out
        assert "COMPLETED" in out
        assert "mock-test-v1 1.0.0" in out
        assert "artifact-1" in out
        assert "Error" not in out

    def test_failed_job_shows_error(self) -> None:
        console, buf = _capture_console()
        display_job(console, _make_job(stage=JobStage.FAILED, error_info="engine_failed: timeout"))
        assert "engine_failed: timeout" in buf.getvalue()
