"""Root CLI application."""

from __future__ import annotations

import typer

from tickerwolf.cli.audit import audit_app
from tickerwolf.cli.db import db_app
from tickerwolf.cli.intraday import intraday_app

app = typer.Typer(
    name="tickerwolf",
    help="Ticker data audit and intraday snapshot cache.",
    no_args_is_help=True,
)

app.add_typer(audit_app, name="audit", help="Audit ticker table health and consistency")
app.add_typer(intraday_app, name="intraday", help="Warm and inspect intraday snapshots")
app.add_typer(db_app, name="db", help="Manage the DuckDB ticker store")


def main() -> None:
    from tickerwolf.config.loader import get_settings
    from tickerwolf.utils.logging import setup_logging

    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    app()
