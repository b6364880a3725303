"""CLI commands for managing the DuckDB ticker store."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

db_app = typer.Typer(no_args_is_help=True)
console = Console()


@db_app.command("init")
def db_init() -> None:
    """Create any missing ticker tables in the DuckDB store."""
    from tickerwolf.config.loader import get_settings
    from tickerwolf.storage.duckdb_manager import DuckDBManager

    settings = get_settings()
    manager = DuckDBManager(settings.storage.duckdb_path)

    with manager.connect() as db:
        tables = db.create_schema()

    typer.echo(f"Ensured {len(tables)} table(s) in {settings.storage.duckdb_path}: {', '.join(tables)}")


@db_app.command("info")
def db_info() -> None:
    """Show table metadata, row counts, and column info."""
    from tickerwolf.config.loader import get_settings
    from tickerwolf.storage.duckdb_manager import DuckDBManager, StoreUnavailable

    settings = get_settings()
    manager = DuckDBManager(settings.storage.duckdb_path, read_only=True)

    try:
        with manager.connect() as db:
            info = db.table_info()
    except StoreUnavailable as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if not info:
        typer.echo("No tables found. Run `tickerwolf db init` first.")
        return

    table = Table(title="DuckDB Tables", show_header=True, header_style="bold")
    table.add_column("Table")
    table.add_column("Rows", justify="right")
    table.add_column("Columns", justify="right")
    table.add_column("Column Names")

    for entry in info:
        if "error" in entry:
            table.add_row(entry["name"], "ERROR", "", entry["error"])
        else:
            table.add_row(
                entry["name"],
                f"{entry['rows']:,}",
                str(entry["columns"]),
                ", ".join(entry["column_names"]),
            )

    console.print(table)
