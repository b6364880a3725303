"""Cross-table consistency checks.

Each check is a zero-argument callable returning an anomaly count, or a
``CheckCount`` when it can also name offenders. Checks are registered under
a unique label and evaluated in parallel; a check that raises is recorded
as an error marker instead of a count.
"""

from __future__ import annotations

import concurrent.futures
from dataclasses import dataclass
from typing import Callable

import duckdb

from tickerwolf.audit.errors import CrossCheckFailure, StoreUnavailable
from tickerwolf.audit.models import CrossCheckResult
from tickerwolf.cache.models import TickerRef
from tickerwolf.storage.duckdb_manager import DuckDBManager, safe_ident
from tickerwolf.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CheckCount:
    count: int
    offenders: list[str] | None = None


Check = Callable[[], int | CheckCount]


class CrossCheckEngine:
    """Registry and parallel runner of labelled checks."""

    def __init__(self, max_workers: int = 4) -> None:
        self._max_workers = max_workers
        self._checks: dict[str, Check] = {}

    def register(self, label: str, check: Check) -> None:
        if label in self._checks:
            raise ValueError(f"Cross-check already registered: {label!r}")
        self._checks[label] = check

    @property
    def labels(self) -> list[str]:
        return list(self._checks)

    def run_all(self) -> dict[str, CrossCheckResult]:
        """Evaluate every check; results keep registration order."""
        if not self._checks:
            return {}

        results: dict[str, CrossCheckResult] = {}
        workers = min(self._max_workers, len(self._checks))
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="audit-check"
        ) as pool:
            futures = {label: pool.submit(check) for label, check in self._checks.items()}
            try:
                for label, future in futures.items():
                    results[label] = self._collect(label, future)
            except StoreUnavailable:
                for future in futures.values():
                    future.cancel()
                raise

        return results

    @staticmethod
    def _collect(label: str, future: concurrent.futures.Future) -> CrossCheckResult:
        try:
            outcome = future.result()
        except StoreUnavailable:
            raise
        except Exception as e:
            reason = e.reason if isinstance(e, CrossCheckFailure) else f"{type(e).__name__}: {e}"
            logger.warning("cross_check_failed", label=label, error=reason)
            return CrossCheckResult(label=label, error=reason)

        if isinstance(outcome, CheckCount):
            return CrossCheckResult(
                label=label, anomaly_count=outcome.count, offenders=outcome.offenders
            )
        return CrossCheckResult(label=label, anomaly_count=int(outcome))


class _Queries:
    """SQL behind the default checks; each call runs on its own cursor."""

    def __init__(self, db: DuckDBManager, detail: bool, detail_limit: int) -> None:
        self._db = db
        self._detail = detail
        self._limit = detail_limit

    def _rows(self, label: str, sql: str) -> list[tuple]:
        try:
            with self._db.cursor() as cur:
                return cur.execute(sql).fetchall()
        except duckdb.ConnectionException as e:
            raise StoreUnavailable(f"Lost connection during {label!r}: {e}") from e
        except duckdb.Error as e:
            raise CrossCheckFailure(label, str(e)) from e

    def _counted(self, label: str, count_sql: str, offenders_sql: str) -> CheckCount:
        count = self._rows(label, count_sql)[0][0] or 0
        offenders = None
        if self._detail:
            rows = self._rows(label, f"{offenders_sql} LIMIT {int(self._limit)}")
            offenders = [str(r[0]) for r in rows]
        return CheckCount(int(count), offenders)

    def missing(self, label: str, table: str, universe: list[TickerRef]) -> CheckCount:
        table = safe_ident(table)
        present = {
            r[0]
            for r in self._rows(
                label, f"SELECT DISTINCT ticker_id FROM {table} WHERE ticker_id IS NOT NULL"
            )
        }
        missing = sorted(t.symbol for t in universe if t.id not in present)
        offenders = missing[: self._limit] if self._detail else None
        return CheckCount(len(missing), offenders)

    def orphans(self, label: str, left: str, right: str) -> CheckCount:
        left, right = safe_ident(left), safe_ident(right)
        base = (
            f"FROM (SELECT DISTINCT l.ticker_id FROM {left} l "
            f"LEFT JOIN {right} r ON r.ticker_id = l.ticker_id "
            f"WHERE r.ticker_id IS NULL AND l.ticker_id IS NOT NULL) o "
            f"LEFT JOIN tickers tk ON tk.id = o.ticker_id"
        )
        return self._counted(
            label,
            f"SELECT COUNT(*) {base}",
            f"SELECT COALESCE(tk.ticker, '#' || CAST(o.ticker_id AS VARCHAR)) AS sym "
            f"{base} ORDER BY sym",
        )

    def unknown_ticker(self, label: str, table: str) -> CheckCount:
        table = safe_ident(table)
        base = f"FROM {table} c LEFT JOIN tickers tk ON tk.id = c.ticker_id WHERE tk.id IS NULL"
        return self._counted(
            label,
            f"SELECT COUNT(*) {base}",
            f"SELECT DISTINCT COALESCE(CAST(c.ticker_id AS VARCHAR), 'NULL') AS tid "
            f"{base} ORDER BY tid",
        )

    def duplicates(self, label: str, table: str, keys: tuple[str, ...]) -> CheckCount:
        table = safe_ident(table)
        cols = ", ".join(safe_ident(k) for k in keys)
        groups = (
            f"SELECT {cols}, COUNT(*) AS n FROM {table} "
            f"GROUP BY {cols} HAVING COUNT(*) > 1"
        )
        return self._counted(
            label,
            f"SELECT COALESCE(SUM(n - 1), 0) FROM ({groups}) g",
            f"SELECT DISTINCT COALESCE(tk.ticker, '#' || CAST(g.ticker_id AS VARCHAR)) "
            f"|| '@' || CAST(CAST(g.t AS DATE) AS VARCHAR) AS k "
            f"FROM ({groups}) g LEFT JOIN tickers tk ON tk.id = g.ticker_id ORDER BY k",
        )

    def empty_indicators(self, label: str) -> CheckCount:
        base = (
            "FROM ticker_feature_snapshots s LEFT JOIN tickers tk ON tk.id = s.ticker_id "
            "WHERE s.indicators IS NULL OR TRIM(s.indicators) IN ('', '{}', '[]', 'null')"
        )
        return self._counted(
            label,
            f"SELECT COUNT(*) {base}",
            f"SELECT DISTINCT COALESCE(tk.ticker, '#' || CAST(s.ticker_id AS VARCHAR)) "
            f"|| '@' || CAST(s.t AS VARCHAR) AS k {base} ORDER BY k",
        )

    def ohlc_bounds(self, label: str) -> CheckCount:
        base = (
            "FROM ticker_price_histories p LEFT JOIN tickers tk ON tk.id = p.ticker_id "
            "WHERE p.l > LEAST(p.o, p.c) OR p.h < GREATEST(p.o, p.c) "
            "OR p.o < 0 OR p.h < 0 OR p.l < 0 OR p.c < 0 OR p.v < 0"
        )
        return self._counted(
            label,
            f"SELECT COUNT(*) {base}",
            f"SELECT DISTINCT COALESCE(tk.ticker, '#' || CAST(p.ticker_id AS VARCHAR)) "
            f"|| '@' || CAST(CAST(p.t AS DATE) AS VARCHAR) AS k {base} ORDER BY k",
        )


MISSING_LABELS = {
    "ticker_price_histories": "Tickers with no price history",
    "ticker_indicators": "Tickers missing indicators",
    "ticker_feature_snapshots": "Tickers missing snapshots",
    "ticker_feature_metrics": "Tickers missing metrics",
}


def build_default_checks(
    db: DuckDBManager,
    universe: list[TickerRef],
    detail: bool = False,
    detail_limit: int = 25,
    max_workers: int = 4,
) -> CrossCheckEngine:
    """Register the standard ticker-table checks against ``db``."""
    q = _Queries(db, detail, detail_limit)
    engine = CrossCheckEngine(max_workers=max_workers)

    for table, label in MISSING_LABELS.items():
        engine.register(label, lambda label=label, table=table: q.missing(label, table, universe))

    for left, right, label in (
        ("ticker_feature_snapshots", "ticker_feature_metrics", "Snapshots without matching metrics"),
        ("ticker_feature_metrics", "ticker_feature_snapshots", "Metrics without matching snapshots"),
    ):
        engine.register(
            label, lambda label=label, left=left, right=right: q.orphans(label, left, right)
        )

    for table in MISSING_LABELS:
        label = f"{table} rows with unknown ticker"
        engine.register(label, lambda label=label, table=table: q.unknown_ticker(label, table))

    for table, keys, label in (
        ("ticker_feature_snapshots", ("ticker_id", "t"), "Duplicate (ticker_id, t) feature snapshots"),
        ("ticker_feature_metrics", ("ticker_id", "t"), "Duplicate (ticker_id, t) feature metrics"),
        (
            "ticker_price_histories",
            ("ticker_id", "resolution", "t"),
            "Duplicate (ticker_id, resolution, t) price bars",
        ),
    ):
        engine.register(
            label, lambda label=label, table=table, keys=keys: q.duplicates(label, table, keys)
        )

    engine.register(
        "Snapshots with empty indicators",
        lambda: q.empty_indicators("Snapshots with empty indicators"),
    )
    engine.register(
        "Price bars violating OHLC bounds",
        lambda: q.ohlc_bounds("Price bars violating OHLC bounds"),
    )
    return engine
