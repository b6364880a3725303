"""Audit orchestration: sample the universe, scan tables, run cross-checks, aggregate."""

from __future__ import annotations

import concurrent.futures
import datetime
from typing import Callable, Sequence

import duckdb

from tickerwolf.audit.cross_checks import CrossCheckEngine, build_default_checks
from tickerwolf.audit.errors import StoreUnavailable, TableScanFailure
from tickerwolf.audit.models import (
    AuditReport,
    OverallHealth,
    TableAuditResult,
    clamp_percent,
    grade_for,
)
from tickerwolf.audit.scanner import DEFAULT_TABLES, TableScanner, TableSpec
from tickerwolf.cache.models import TickerRef
from tickerwolf.config.settings import AuditSettings
from tickerwolf.storage.duckdb_manager import DuckDBManager
from tickerwolf.utils.dates import utc_now
from tickerwolf.utils.logging import get_logger

logger = get_logger(__name__)

ChecksFactory = Callable[[DuckDBManager, list[TickerRef], bool], CrossCheckEngine]


def load_universe(db: DuckDBManager, limit: int = 0) -> list[TickerRef]:
    """Active tickers ordered by id; ``limit=0`` means all of them."""
    sql = "SELECT id, ticker FROM tickers WHERE active = TRUE ORDER BY id"
    if limit > 0:
        sql += f" LIMIT {int(limit)}"
    try:
        rows = db.execute(sql)
    except duckdb.Error as e:
        raise StoreUnavailable(f"Cannot read ticker universe: {e}") from e
    return [TickerRef(id=int(r[0]), symbol=str(r[1])) for r in rows]


def overall_health(
    tables: dict[str, TableAuditResult],
    critical_tables: Sequence[str],
    critical_weight: float,
) -> OverallHealth:
    """Weighted mean of table health; critical tables count ``critical_weight`` times."""
    total = 0.0
    weights = 0.0
    for name, result in tables.items():
        w = critical_weight if name in critical_tables else 1.0
        total += w * result.health_percent
        weights += w
    percent = clamp_percent(total / weights) if weights else 0.0
    return OverallHealth(system_health_percent=percent, grade=grade_for(percent))


class AuditEngine:
    """Runs a full data audit against the relational ticker store."""

    def __init__(
        self,
        db: DuckDBManager,
        settings: AuditSettings | None = None,
        tables: Sequence[TableSpec] = DEFAULT_TABLES,
        clock: Callable[[], datetime.datetime] = utc_now,
        checks_factory: ChecksFactory | None = None,
    ) -> None:
        self._db = db
        self._settings = settings or AuditSettings()
        self._tables = tuple(tables)
        self._clock = clock
        self._checks_factory = checks_factory

    def run(self, sample_limit: int = 0, detail: bool = False) -> AuditReport:
        """Audit every table and cross-check; raises StoreUnavailable if the store is unusable."""
        if sample_limit < 0:
            raise ValueError(f"sample_limit must be >= 0, got {sample_limit}")

        s = self._settings
        now = self._clock()
        universe = load_universe(self._db, sample_limit)
        logger.info("audit_started", tickers=len(universe), sample_limit=sample_limit, detail=detail)

        scanner = TableScanner(
            self._db,
            audit_date=now.date(),
            completeness_weight=s.completeness_weight,
            freshness_weight=s.freshness_weight,
            freshness_decay_days=s.freshness_decay_days,
            detail_limit=s.detail_limit,
        )
        tables = self._scan_tables(scanner, universe, detail)

        if self._checks_factory is not None:
            checks = self._checks_factory(self._db, universe, detail)
        else:
            checks = build_default_checks(
                self._db,
                universe,
                detail=detail,
                detail_limit=s.detail_limit,
                max_workers=s.max_workers,
            )
        cross = checks.run_all()

        overall = overall_health(tables, s.critical_tables, s.critical_weight)
        report = AuditReport(tables=tables, cross=cross, overall=overall, generated_at=now)

        logger.info(
            "audit_complete",
            system_health_percent=overall.system_health_percent,
            grade=overall.grade.value,
            failed_tables=report.failed_tables,
            failed_checks=report.failed_checks,
        )
        return report

    def _scan_tables(
        self,
        scanner: TableScanner,
        universe: list[TickerRef],
        detail: bool,
    ) -> dict[str, TableAuditResult]:
        if not self._tables:
            return {}

        results: dict[str, TableAuditResult] = {}
        workers = min(self._settings.max_workers, len(self._tables))
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="audit-scan"
        ) as pool:
            futures = {
                spec.name: pool.submit(scanner.scan, spec, universe, detail)
                for spec in self._tables
            }
            for name, future in futures.items():
                try:
                    results[name] = future.result()
                except StoreUnavailable:
                    for f in futures.values():
                        f.cancel()
                    raise
                except TableScanFailure as e:
                    logger.warning("table_scan_failed", table=name, error=e.reason)
                    results[name] = TableAuditResult.failed(name, e.reason)
                except Exception as e:
                    logger.exception("table_scan_failed", table=name)
                    results[name] = TableAuditResult.failed(name, f"{type(e).__name__}: {e}")

        return results
