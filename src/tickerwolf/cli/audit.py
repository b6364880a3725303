"""CLI commands for the cross-table data audit."""

from __future__ import annotations

import datetime
import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table
from typing_extensions import Annotated

from tickerwolf.audit.models import AuditReport, Grade, TableStatus
from tickerwolf.utils.logging import get_logger

audit_app = typer.Typer(no_args_is_help=True)
console = Console()
logger = get_logger(__name__)

STATUS_STYLES = {
    TableStatus.OK: "green",
    TableStatus.WARN: "yellow",
    TableStatus.FAIL: "red",
}

GRADE_STYLES = {
    Grade.EXCELLENT: "bold green",
    Grade.GOOD: "yellow",
    Grade.POOR: "bold red",
}


@audit_app.command("run")
def audit_run(
    limit: Annotated[
        int, typer.Option("--limit", min=0, help="Audit only the first N active tickers (0 = all)")
    ] = 0,
    detail: Annotated[
        bool, typer.Option("--detail", help="List missing tickers and check offenders")
    ] = False,
    export: Annotated[
        bool, typer.Option("--export", help="Write the report as JSON under audit.export_dir")
    ] = False,
) -> None:
    """Score table health and cross-table consistency of the ticker store."""
    from tickerwolf.audit.engine import AuditEngine
    from tickerwolf.audit.errors import StoreUnavailable
    from tickerwolf.config.loader import get_settings
    from tickerwolf.storage.duckdb_manager import DuckDBManager

    settings = get_settings()
    manager = DuckDBManager(settings.storage.duckdb_path, read_only=True)

    try:
        with manager.connect() as db:
            report = AuditEngine(db, settings.audit).run(sample_limit=limit, detail=detail)
    except StoreUnavailable as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    _print_report(report)

    if export:
        path = export_report(report, settings.audit.export_dir)
        console.print(f"\nReport exported to [bold]{path}[/bold]")

    logger.info("data_audit_complete", report=report.model_dump(mode="json"))


def export_report(
    report: AuditReport, export_dir: Path, now: datetime.datetime | None = None
) -> Path:
    """Write ``report`` to ``export_dir/tickers_data_audit_<YYYYmmdd_HHMMSS>.json``."""
    now = now or datetime.datetime.now()
    export_dir.mkdir(parents=True, exist_ok=True)
    path = export_dir / f"tickers_data_audit_{now:%Y%m%d_%H%M%S}.json"
    path.write_text(json.dumps(report.model_dump(mode="json"), indent=2))
    return path


def _print_report(report: AuditReport) -> None:
    tables = Table(title="Table Health", show_header=True, header_style="bold")
    tables.add_column("Table")
    tables.add_column("Rows", justify="right")
    tables.add_column("Coverage", justify="right")
    tables.add_column("Latest")
    tables.add_column("Health %", justify="right")
    tables.add_column("Status")

    for name, result in report.tables.items():
        style = STATUS_STYLES[result.status]
        tables.add_row(
            name,
            f"{result.row_count:,}",
            f"{result.tickers_covered}/{result.tickers_expected}",
            result.latest_at.isoformat() if result.latest_at else "-",
            f"{result.health_percent:.2f}",
            f"[{style}]{result.status.value}[/{style}]",
        )
    console.print(tables)

    for name, result in report.tables.items():
        if result.error:
            console.print(f"[red]{name}: {result.error}[/red]")
        if result.missing_tickers:
            console.print(f"[dim]{name} missing:[/dim] {', '.join(result.missing_tickers)}")

    overall = report.overall
    style = GRADE_STYLES[overall.grade]
    console.print(
        f"\n[bold]System health:[/bold] {overall.system_health_percent:.2f}% "
        f"([{style}]{overall.grade.value}[/{style}])\n"
    )

    checks = Table(title="Cross-Table Checks", show_header=True, header_style="bold")
    checks.add_column("Check")
    checks.add_column("Anomalies", justify="right")
    checks.add_column("Offenders")

    for label, result in report.cross.items():
        if result.failed:
            count = "[red]ERROR[/red]"
            offenders = result.error or ""
        else:
            count = (
                f"[green]{result.anomaly_count}[/green]"
                if result.anomaly_count == 0
                else f"[yellow]{result.anomaly_count}[/yellow]"
            )
            offenders = ", ".join(result.offenders) if result.offenders else "-"
        checks.add_row(label, count, offenders)

    console.print(checks)
