"""Rich output formatting for the reports CLI.

All functions write to a :class:`rich.console.Console` instance (typically
bound to *stderr*) so that machine-readable output on *stdout* is never
polluted with human-readable decoration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from report_engine.models.catalog import EngineDescriptor, RendererDescriptor
    from report_engine.models.job import ReportJob
    from report_engine.models.ledger import CreditTransaction, LedgerAudit


# ---------------------------------------------------------------------------
# Status colour mapping
# ---------------------------------------------------------------------------

_STAGE_COLOURS: dict[str, str] = {
    "COMPLETED": "green",
    "FAILED": "red",
    "ANALYZING": "yellow",
    "RENDERING": "yellow",
    "QUEUED": "dim",
}

_KIND_COLOURS: dict[str, str] = {
    "RESERVE": "yellow",
    "CHARGE": "cyan",
    "REFUND": "green",
    "TOPUP": "green",
}


def _coloured(value: str, palette: dict[str, str]) -> str:
    colour = palette.get(value, "white")
    return f"[{colour}]{value}[/{colour}]"


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def display_engines(console: Console, engines: list[EngineDescriptor]) -> None:
    """Render a table of engine descriptors.

    Parameters
    ----------
    console:
        Rich console to write to (typically stderr).
    engines:
        Descriptors to list, in the order given.
    """
    if not engines:
        console.print("[dim]No engines registered.[/dim]")
        return

    table = Table(title=f"Engines ({len(engines)})", show_lines=False, pad_edge=True, expand=False)
    table.add_column("ID", style="bold")
    table.add_column("Version")
    table.add_column("Cost", justify="right")
    table.add_column("Signals")
    table.add_column("Min Quality", justify="right")
    table.add_column("Status")

    for e in engines:
        signals = ", ".join(sorted(t.value for t in e.supported_data_types)) or "-"
        table.add_row(
            e.id,
            e.version,
            str(e.cost_per_analysis),
            signals,
            f"{e.quality_threshold:g}",
            "[green]active[/green]" if e.active else "[dim]retired[/dim]",
        )

    console.print(table)


def display_renderers(console: Console, renderers: list[RendererDescriptor], title: str = "Renderers") -> None:
    """Render a table of renderer descriptors."""
    if not renderers:
        console.print("[dim]No renderers found.[/dim]")
        return

    table = Table(title=f"{title} ({len(renderers)})", show_lines=False, pad_edge=True, expand=False)
    table.add_column("ID", style="bold")
    table.add_column("Version")
    table.add_column("Format")
    table.add_column("Cost", justify="right")
    table.add_column("Engines")
    table.add_column("Access")

    for r in renderers:
        access = r.access_control.value
        if r.organization_id:
            access = f"{access} ({r.organization_id})"
        table.add_row(
            r.id,
            r.version,
            r.output_format.value,
            str(r.cost_per_render),
            ", ".join(sorted(r.compatible_engine_ids)),
            access,
        )

    console.print(table)


def display_matrix(console: Console, matrix: dict[str, list[str]]) -> None:
    """Render engine -> ranked renderer ids."""
    if not matrix:
        console.print("[dim]No engines registered.[/dim]")
        return

    table = Table(title="Compatibility", show_lines=False, pad_edge=True, expand=False)
    table.add_column("Engine", style="bold")
    table.add_column("Renderers (best first)")
    for engine_id, renderer_ids in matrix.items():
        table.add_row(engine_id, ", ".join(renderer_ids) or "[red]none[/red]")
    console.print(table)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


def display_transactions(console: Console, account_id: str, transactions: list[CreditTransaction]) -> None:
    """Render ledger entries, newest first."""
    if not transactions:
        console.print(f"[dim]No transactions for {account_id}.[/dim]")
        return

    table = Table(title=f"Transactions: {account_id}", show_lines=False, pad_edge=True, expand=False)
    table.add_column("#", justify="right")
    table.add_column("Kind")
    table.add_column("Amount", justify="right")
    table.add_column("Effect", justify="right")
    table.add_column("Balance", justify="right")
    table.add_column("Job")
    table.add_column("At")

    for tx in transactions:
        table.add_row(
            str(tx.id),
            _coloured(tx.kind.value, _KIND_COLOURS),
            str(tx.amount),
            f"{tx.amount_signed:+d}",
            str(tx.balance_after),
            tx.related_job_id or tx.reference or "-",
            tx.created_at.strftime("%Y-%m-%d %H:%M:%S"),
        )

    console.print(table)


def display_audit(console: Console, audits: list[LedgerAudit]) -> None:
    """Render balance-versus-log audit results with a summary line."""
    if not audits:
        console.print("[dim]No accounts to audit.[/dim]")
        return

    table = Table(title="Ledger Audit", show_lines=False, pad_edge=True, expand=False)
    table.add_column("Account", style="bold")
    table.add_column("Balance", justify="right")
    table.add_column("Log Sum", justify="right")
    table.add_column("Entries", justify="right")
    table.add_column("Open Reservations", justify="right")
    table.add_column("Status")

    drifted = 0
    for audit in audits:
        if not audit.consistent:
            drifted += 1
        table.add_row(
            audit.account_id,
            str(audit.balance),
            str(audit.ledger_sum),
            str(audit.transaction_count),
            str(audit.open_reservations),
            "[green]ok[/green]" if audit.consistent else "[red]DRIFT[/red]",
        )

    console.print(table)
    parts = [f"[bold]{len(audits)}[/bold] account(s)"]
    if drifted:
        parts.append(f"[red]{drifted} inconsistent[/red]")
    else:
        parts.append("[green]all consistent[/green]")
    console.print(" | ".join(parts))


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


def display_job(console: Console, job: ReportJob) -> None:
    """Render one report job as a panel."""
    lines = [
        f"[bold]Job:[/bold]       {job.id}",
        f"[bold]Stage:[/bold]     {_coloured(job.stage.value, _STAGE_COLOURS)}",
        f"[bold]Account:[/bold]   {job.account_id}",
        f"[bold]Session:[/bold]   {job.session_id}",
        f"[bold]Engine:[/bold]    {job.engine_id} {job.engine_version or ''}".rstrip(),
        f"[bold]Renderer:[/bold]  {job.renderer_id} {job.renderer_version or ''}".rstrip(),
        f"[bold]Reserved:[/bold]  {job.reserved_amount}",
        f"[bold]Attempts:[/bold]  {job.attempts}",
    ]
    if job.error_info:
        lines.append(f"[bold]Error:[/bold]     [red]{job.error_info}[/red]")
    if job.rendered_artifact_ref:
        lines.append(f"[bold]Artifact:[/bold]  {job.rendered_artifact_ref}")
    for stage, at in job.stage_timestamps.items():
        lines.append(f"[dim]{stage:<10} {at}[/dim]")

    console.print(Panel("\n".join(lines), title="Report Job", border_style="blue"))
