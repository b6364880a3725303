"""Per-table scans: row count, ticker coverage and freshness."""

from __future__ import annotations

import datetime
from dataclasses import dataclass

import duckdb

from tickerwolf.audit.errors import StoreUnavailable, TableScanFailure
from tickerwolf.audit.models import TableAuditResult, clamp_percent, status_for
from tickerwolf.cache.models import TickerRef
from tickerwolf.storage.duckdb_manager import DuckDBManager, safe_ident
from tickerwolf.utils.dates import trading_days_behind
from tickerwolf.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TableSpec:
    """An audited table: its name, time column and expected cadence in trading days."""

    name: str
    time_column: str = "t"
    cadence_days: int = 1


DEFAULT_TABLES: tuple[TableSpec, ...] = (
    TableSpec("ticker_price_histories"),
    TableSpec("ticker_indicators"),
    TableSpec("ticker_feature_snapshots"),
    TableSpec("ticker_feature_metrics"),
)


def completeness_ratio(covered: int, expected: int) -> float:
    if expected <= 0:
        return 0.0
    return covered / expected


def freshness_ratio(
    latest: datetime.date | None,
    audit_date: datetime.date,
    cadence_days: int,
    decay_days: int,
) -> float:
    """1.0 within cadence, decaying linearly to 0 over ``decay_days`` more trading days."""
    if latest is None:
        return 0.0
    behind = trading_days_behind(latest, audit_date)
    if behind <= cadence_days:
        return 1.0
    return max(0.0, 1.0 - (behind - cadence_days) / decay_days)


def _as_date(value: object) -> datetime.date | None:
    if value is None:
        return None
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(str(value)[:10])


class TableScanner:
    """Scans one table at a time against a sampled ticker universe."""

    def __init__(
        self,
        db: DuckDBManager,
        audit_date: datetime.date,
        completeness_weight: float = 0.7,
        freshness_weight: float = 0.3,
        freshness_decay_days: int = 10,
        detail_limit: int = 25,
    ) -> None:
        self._db = db
        self._audit_date = audit_date
        self._completeness_weight = completeness_weight
        self._freshness_weight = freshness_weight
        self._decay_days = freshness_decay_days
        self._detail_limit = detail_limit

    def scan(
        self,
        spec: TableSpec,
        universe: list[TickerRef],
        detail: bool = False,
    ) -> TableAuditResult:
        table = safe_ident(spec.name)
        time_col = safe_ident(spec.time_column)

        try:
            with self._db.cursor() as cur:
                row_count = cur.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                latest_raw = cur.execute(f"SELECT MAX({time_col}) FROM {table}").fetchone()[0]
                present = {
                    row[0]
                    for row in cur.execute(
                        f"SELECT DISTINCT ticker_id FROM {table} WHERE ticker_id IS NOT NULL"
                    ).fetchall()
                }
        except duckdb.ConnectionException as e:
            raise StoreUnavailable(f"Lost connection while scanning {table}: {e}") from e
        except duckdb.Error as e:
            raise TableScanFailure(table, str(e)) from e

        expected = len(universe)
        missing = [t for t in universe if t.id not in present]
        covered = expected - len(missing)
        latest = _as_date(latest_raw)

        completeness = completeness_ratio(covered, expected)
        freshness = freshness_ratio(latest, self._audit_date, spec.cadence_days, self._decay_days)
        health = clamp_percent(
            100 * (self._completeness_weight * completeness + self._freshness_weight * freshness)
        )

        missing_tickers = None
        if detail:
            missing_tickers = sorted(t.symbol for t in missing)[: self._detail_limit]

        logger.debug(
            "table_scanned",
            table=table,
            rows=row_count,
            covered=covered,
            expected=expected,
            latest=latest.isoformat() if latest else None,
            health=health,
        )

        return TableAuditResult(
            table_name=spec.name,
            row_count=row_count,
            completeness_ratio=round(completeness, 6),
            freshness_ratio=round(freshness, 6),
            health_percent=health,
            status=status_for(health),
            tickers_expected=expected,
            tickers_covered=covered,
            latest_at=latest,
            missing_tickers=missing_tickers,
        )
