"""CLI commands for the intraday snapshot cache."""

from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table
from typing_extensions import Annotated

from tickerwolf.cache.models import SESSION_LABELS, CacheEntryState

intraday_app = typer.Typer(no_args_is_help=True)
console = Console()

STATE_STYLES = {
    CacheEntryState.FRESH: "green",
    CacheEntryState.STALE: "yellow",
    CacheEntryState.FETCHING: "cyan",
    CacheEntryState.MISSING: "red",
}


@intraday_app.command("prefetch")
def intraday_prefetch(
    symbol: Annotated[
        Optional[str], typer.Option("--symbol", help="Warm a single symbol")
    ] = None,
    limit: Annotated[
        int, typer.Option("--limit", min=1, help="Max active tickers to warm in batch mode")
    ] = 500,
    force: Annotated[
        bool, typer.Option("--force", help="Refetch even when the cached snapshot is fresh")
    ] = False,
) -> None:
    """Warm intraday snapshots for one symbol or the active ticker universe."""
    from tickerwolf.audit.engine import load_universe
    from tickerwolf.audit.errors import StoreUnavailable
    from tickerwolf.cache.factory import build_snapshot_cache
    from tickerwolf.config.loader import get_settings
    from tickerwolf.storage.duckdb_manager import DuckDBManager

    settings = get_settings()

    with build_snapshot_cache(settings) as cache:
        if symbol:
            snapshot = cache.get(symbol, force=force)
            if snapshot is None:
                console.print(f"[yellow]No intraday data available for {symbol.upper()}[/yellow]")
            else:
                console.print(
                    f"[green]Cached {snapshot.symbol}[/green] "
                    f"({len(snapshot.bars)} bars, last {snapshot.last_price})"
                )
            return

        manager = DuckDBManager(settings.storage.duckdb_path, read_only=True)
        try:
            with manager.connect() as db:
                tickers = load_universe(db, limit)
        except StoreUnavailable as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)

        if not tickers:
            typer.echo("No active tickers found. Run `tickerwolf db init` and load tickers first.")
            return

        warmed = cache.warm_many(tickers, force=force)
        console.print(f"Warmed {warmed}/{len(tickers)} intraday snapshot(s)")


@intraday_app.command("show")
def intraday_show(
    symbol: Annotated[str, typer.Option("--symbol", help="Ticker symbol")],
    force: Annotated[bool, typer.Option("--force", help="Refetch before showing")] = False,
    bars: Annotated[int, typer.Option("--bars", min=0, help="Number of trailing bars to print")] = 10,
) -> None:
    """Show today's cached snapshot for a symbol, fetching it if needed."""
    from tickerwolf.cache.factory import build_snapshot_cache
    from tickerwolf.config.loader import get_settings

    settings = get_settings()
    tz = settings.intraday.market_timezone

    with build_snapshot_cache(settings) as cache:
        snapshot = cache.get(symbol, force=force)
        state = cache.state(symbol)

    if snapshot is None:
        console.print(f"[yellow]No intraday data available for {symbol.upper()}[/yellow]")
        raise typer.Exit(0)

    style = STATE_STYLES[state]
    session = snapshot.session(tz)
    summary = Table(title=f"{snapshot.symbol} {snapshot.trading_date.isoformat()}", show_header=False)
    summary.add_column("Field", style="bold")
    summary.add_column("Value")
    summary.add_row("State", f"[{style}]{state.value}[/{style}]")
    summary.add_row("Session", SESSION_LABELS[session] if session else "-")
    summary.add_row("Last price", f"{snapshot.last_price:,.4f}")
    summary.add_row("Day high", f"{snapshot.day_high:,.4f}")
    summary.add_row("Day low", f"{snapshot.day_low:,.4f}")
    summary.add_row("Volume", f"{snapshot.volume:,.0f}")
    if snapshot.change_abs is not None:
        summary.add_row("Prev close", f"{snapshot.prev_close:,.4f}")
        summary.add_row("Change", f"{snapshot.change_abs:+,.4f} ({snapshot.change_pct:+.2f}%)")
    summary.add_row("As of", snapshot.as_of.isoformat() if snapshot.as_of else "-")
    summary.add_row("Fetched at", snapshot.fetched_at.isoformat())
    console.print(summary)

    if bars <= 0:
        return

    table = Table(title=f"Last {bars} bar(s)", show_header=True, header_style="bold")
    for col in ("Time", "Open", "High", "Low", "Close", "Volume"):
        table.add_column(col, justify="left" if col == "Time" else "right")

    for row in snapshot.to_frame().tail(bars).iter_rows(named=True):
        table.add_row(
            row["timestamp"].isoformat(),
            f"{row['open']:.4f}",
            f"{row['high']:.4f}",
            f"{row['low']:.4f}",
            f"{row['close']:.4f}",
            f"{row['volume']:,.0f}",
        )
    console.print(table)
