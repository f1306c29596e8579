"""Linkband reports CLI -- Typer-based operator interface.

Provides commands for catalog inspection, credit administration, ledger
audits, local report runs and stale-job recovery.  Human-readable output
goes to *stderr* via Rich; ``--json`` switches every command to
machine-readable JSON on *stdout* so that scripts can compose cleanly.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import typer
from pydantic import ValidationError as PydanticValidationError
from report_engine.config import Settings, load_settings
from report_engine.errors import ReportEngineError
from report_engine.models.analysis import MeasurementSummary
from report_engine.models.job import RequestContext
from report_engine.models.ledger import LedgerAudit
from report_engine.registry import matcher
from report_engine.registry.defaults import build_default_registry
from report_engine.service import ReportService
from report_engine.state.database import create_tables, get_engine, get_session_factory
from rich.console import Console

from cli.display import (
    display_audit,
    display_engines,
    display_job,
    display_matrix,
    display_renderers,
    display_transactions,
)

T = TypeVar("T")

# ---------------------------------------------------------------------------
# App & global state
# ---------------------------------------------------------------------------

app = typer.Typer(
    name="linkband-reports",
    help="Linkband Reports - credit-metered AI report generation",
    no_args_is_help=True,
)
console = Console(stderr=True)

catalog_app = typer.Typer(name="catalog", help="Inspect registered engines and renderers.", no_args_is_help=True)
credits_app = typer.Typer(name="credits", help="Administer credit accounts.", no_args_is_help=True)
jobs_app = typer.Typer(name="jobs", help="Run, inspect and recover report jobs.", no_args_is_help=True)
summaries_app = typer.Typer(name="summaries", help="Manage measurement summaries.", no_args_is_help=True)
app.add_typer(catalog_app, name="catalog")
app.add_typer(credits_app, name="credits")
app.add_typer(jobs_app, name="jobs")
app.add_typer(summaries_app, name="summaries")

# Mutable global options populated by the Typer callback.
_json_output: bool = False
_database_url: str | None = None


# ---------------------------------------------------------------------------
# Callback -- global options
# ---------------------------------------------------------------------------


@app.callback()
def _global_options(
    json_mode: bool = typer.Option(
        False,
        "--json/--no-json",
        help="Emit structured JSON to stdout instead of human-readable output.",
    ),
    database_url: str | None = typer.Option(
        None,
        "--database-url",
        help="Database URL; defaults to REPORTS_DATABASE_URL.",
        envvar="REPORTS_DATABASE_URL",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log pipeline activity to stderr."),
) -> None:
    """Global options applied to every command."""
    global _json_output, _database_url  # noqa: PLW0603
    _json_output = json_mode
    _database_url = database_url
    if verbose:
        from rich.logging import RichHandler

        logging.basicConfig(
            level=logging.INFO,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
            force=True,
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _settings() -> Settings:
    if _database_url:
        return load_settings(database_url=_database_url)
    return load_settings()


def _emit_json(data: Any) -> None:
    sys.stdout.write(json.dumps(data, indent=2, default=str) + "\n")


def _run_with_service(fn: Callable[[ReportService], Awaitable[T]], ensure_tables: bool = False) -> T:
    """Run *fn* against a freshly built service and dispose it afterwards.

    Domain errors are reported on the console and end the command with exit
    code 3.
    """

    async def _main() -> T:
        settings = _settings()
        engine = get_engine(settings.database_url)
        service = ReportService(get_session_factory(engine), build_default_registry(settings), settings)
        try:
            if ensure_tables:
                await create_tables(engine)
            return await fn(service)
        finally:
            await service.aclose(cancel=True)
            await engine.dispose()

    try:
        return asyncio.run(_main())
    except ReportEngineError as exc:
        console.print(f"[red]{type(exc).__name__}: {exc}[/red]")
        raise typer.Exit(code=3) from exc


def _dump(model: Any) -> Any:
    return model.model_dump(mode="json")


# ---------------------------------------------------------------------------
# init-db / serve
# ---------------------------------------------------------------------------


@app.command("init-db")
def init_db() -> None:
    """Create the pipeline tables if they do not exist."""

    async def _create() -> None:
        engine = get_engine(_settings().database_url)
        try:
            await create_tables(engine)
        finally:
            await engine.dispose()

    asyncio.run(_create())
    if _json_output:
        _emit_json({"status": "ok"})
    else:
        console.print("[green]Database tables ensured.[/green]")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Host to bind the API server to."),
    port: int = typer.Option(8000, "--port", "-p", help="API server port."),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload on code changes."),
) -> None:
    """Start the report API with uvicorn."""
    try:
        import uvicorn
    except ImportError as exc:
        console.print(f"[red]Missing dependency: {exc}[/red]")
        raise typer.Exit(code=3) from exc

    console.print(f"[green]✓[/green] API server starting on http://{host}:{port}")
    console.print(f"[green]✓[/green] OpenAPI docs at http://{host}:{port}/docs")
    uvicorn.run("api.main:app", host=host, port=port, reload=reload, log_level="info", access_log=False)


# ---------------------------------------------------------------------------
# catalog
# ---------------------------------------------------------------------------


@catalog_app.command("engines")
def catalog_engines(
    data_type: list[str] = typer.Option([], "--data-type", "-d", help="Required signal channel (repeatable)."),
    max_cost: int | None = typer.Option(None, "--max-cost", help="Maximum credits per analysis."),
    organization: str | None = typer.Option(None, "--org", help="Include engines scoped to this organization."),
) -> None:
    """List active engines, optionally filtered by channel coverage and cost."""
    registry = build_default_registry(_settings())
    engines = matcher.search_engines(
        registry,
        frozenset(data_type) if data_type else None,
        max_cost,
        organization_id=organization,
    )
    if _json_output:
        _emit_json([_dump(e) for e in engines])
    else:
        display_engines(console, engines)


@catalog_app.command("renderers")
def catalog_renderers(
    include_retired: bool = typer.Option(False, "--all", help="Include retired versions."),
) -> None:
    """List registered renderers."""
    registry = build_default_registry(_settings())
    renderers = registry.list_renderers(include_inactive=True) if include_retired else registry.latest_renderers()
    if _json_output:
        _emit_json([_dump(r) for r in renderers])
    else:
        display_renderers(console, renderers)


@catalog_app.command("compatible")
def catalog_compatible(
    engine_id: str = typer.Argument(..., help="Engine to match."),
    organization: str | None = typer.Option(None, "--org", help="Caller organization for scoped renderers."),
) -> None:
    """List renderers compatible with ENGINE_ID, best first."""
    registry = build_default_registry(_settings())
    engine = registry.get_engine(engine_id)
    if engine is None or not engine.available_to(organization):
        console.print(f"[red]Unknown or retired engine '{engine_id}'.[/red]")
        raise typer.Exit(code=3)
    renderers = registry.find_compatible(engine_id, organization_id=organization)
    if _json_output:
        _emit_json([_dump(r) for r in renderers])
    else:
        display_renderers(console, renderers, title=f"Renderers for {engine_id}")


@catalog_app.command("matrix")
def catalog_matrix() -> None:
    """Show every active engine with its ranked compatible renderers."""
    matrix = matcher.compatibility_matrix(build_default_registry(_settings()))
    if _json_output:
        _emit_json(matrix)
    else:
        display_matrix(console, matrix)


# ---------------------------------------------------------------------------
# credits
# ---------------------------------------------------------------------------


@credits_app.command("open")
def credits_open(
    account_id: str = typer.Argument(..., help="Account to create."),
    balance: int = typer.Option(0, "--balance", min=0, help="Initial credit balance."),
) -> None:
    """Open a credit account."""
    account = _run_with_service(lambda s: s.open_account(account_id, balance), ensure_tables=True)
    if _json_output:
        _emit_json(_dump(account))
    else:
        console.print(f"[green]Opened {account.account_id} with {account.balance} credit(s).[/green]")


@credits_app.command("top-up")
def credits_top_up(
    account_id: str = typer.Argument(...),
    amount: int = typer.Argument(..., min=1, help="Credits to add."),
    reference: str | None = typer.Option(None, "--reference", "-r", help="Payment or order reference."),
) -> None:
    """Add credits to an account."""
    tx = _run_with_service(lambda s: s.top_up(account_id, amount, reference))
    if _json_output:
        _emit_json(_dump(tx))
    else:
        console.print(f"[green]+{tx.amount} credit(s); {account_id} balance is now {tx.balance_after}.[/green]")


@credits_app.command("balance")
def credits_balance(account_id: str = typer.Argument(...)) -> None:
    """Show an account balance."""
    balance = _run_with_service(lambda s: s.get_account_balance(account_id))
    if _json_output:
        _emit_json({"account_id": account_id, "balance": balance})
    else:
        console.print(f"[bold]{account_id}[/bold]: {balance} credit(s)")


@credits_app.command("history")
def credits_history(
    account_id: str = typer.Argument(...),
    limit: int = typer.Option(50, "--limit", "-n", min=1),
) -> None:
    """Show the most recent ledger entries of an account."""
    transactions = _run_with_service(lambda s: s.get_transactions(account_id, limit=limit))
    if _json_output:
        _emit_json([_dump(tx) for tx in transactions])
    else:
        display_transactions(console, account_id, transactions)


@credits_app.command("audit")
def credits_audit(
    account_id: str | None = typer.Argument(None, help="Audit one account; all accounts when omitted."),
) -> None:
    """Compare cached balances against the transaction log.

    Exits with code 1 when any account has drifted.
    """

    async def _audit(service: ReportService) -> list[LedgerAudit]:
        if account_id is not None:
            return [await service.audit_account(account_id)]
        return await service.audit_all_accounts()

    audits = _run_with_service(_audit)
    if _json_output:
        _emit_json([{**a.model_dump(mode="json"), "consistent": a.consistent} for a in audits])
    else:
        display_audit(console, audits)
    if any(not a.consistent for a in audits):
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# jobs
# ---------------------------------------------------------------------------


@jobs_app.command("run")
def jobs_run(
    session_id: str = typer.Argument(..., help="Measurement session to analyse."),
    engine_id: str = typer.Option("mock-test-v1", "--engine", "-e"),
    renderer_id: str = typer.Option("basic-web-v1", "--renderer", "-r"),
    account_id: str = typer.Option(..., "--account", "-a", help="Account paying for the report."),
    organization: str | None = typer.Option(None, "--org"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write the rendered report to this file."),
    timeout: float = typer.Option(300.0, "--timeout", help="Seconds to wait for the job to finish."),
) -> None:
    """Submit a report job and wait for it to finish."""
    context = RequestContext(account_id=account_id, requester_id=account_id, organization_id=organization)

    async def _run(service: ReportService) -> tuple[Any, str | None]:
        job_id = await service.submit_report_job(session_id, engine_id, renderer_id, context)
        job = await service.orchestrator.wait_for(job_id, timeout=timeout)
        content = None
        if job.rendered_artifact_ref is not None:
            content = (await service.get_report_artifact(job_id, context)).content
        return job, content

    job, content = _run_with_service(_run)
    if output is not None and content is not None:
        output.write_text(content, encoding="utf-8")
    if _json_output:
        _emit_json(_dump(job))
    else:
        display_job(console, job)
        if output is not None and content is not None:
            console.print(f"[green]Report written to {output}[/green]")
    if job.error_info:
        raise typer.Exit(code=3)


@jobs_app.command("show")
def jobs_show(job_id: str = typer.Argument(...)) -> None:
    """Show one report job."""
    job = _run_with_service(lambda s: s.get_job_status(job_id))
    if _json_output:
        _emit_json(_dump(job))
    else:
        display_job(console, job)


@jobs_app.command("reap")
def jobs_reap(
    older_than: int | None = typer.Option(
        None,
        "--older-than",
        min=0,
        help="Seconds since the last stage change; defaults to REPORTS_STALE_JOB_SECONDS.",
    ),
) -> None:
    """Fail and refund jobs left running by a crashed process."""
    reaped = _run_with_service(lambda s: s.reap_stale_jobs(older_than))
    if _json_output:
        _emit_json({"reaped": reaped})
    elif reaped:
        console.print(f"[yellow]Reaped {len(reaped)} stale job(s):[/yellow] {', '.join(reaped)}")
    else:
        console.print("[green]No stale jobs.[/green]")


# ---------------------------------------------------------------------------
# summaries
# ---------------------------------------------------------------------------


@summaries_app.command("import")
def summaries_import(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON file with one summary or a list."),
) -> None:
    """Import measurement summaries from a JSON file."""
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        items = raw if isinstance(raw, list) else [raw]
        summaries = [MeasurementSummary.model_validate(item) for item in items]
    except (json.JSONDecodeError, PydanticValidationError) as exc:
        console.print(f"[red]Invalid summary file {path}: {exc}[/red]")
        raise typer.Exit(code=3) from exc

    async def _import(service: ReportService) -> int:
        for summary in summaries:
            await service.store_summary(summary)
        return len(summaries)

    count = _run_with_service(_import, ensure_tables=True)
    if _json_output:
        _emit_json({"imported": count, "session_ids": [s.session_id for s in summaries]})
    else:
        console.print(f"[green]Imported {count} summary(ies).[/green]")
