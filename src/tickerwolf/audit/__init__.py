"""Cross-table data audit."""

from tickerwolf.audit.cross_checks import CheckCount, CrossCheckEngine, build_default_checks
from tickerwolf.audit.engine import AuditEngine, load_universe, overall_health
from tickerwolf.audit.errors import CrossCheckFailure, StoreUnavailable, TableScanFailure
from tickerwolf.audit.models import (
    AuditReport,
    CrossCheckResult,
    Grade,
    OverallHealth,
    TableAuditResult,
    TableStatus,
    grade_for,
    status_for,
)
from tickerwolf.audit.scanner import DEFAULT_TABLES, TableScanner, TableSpec

__all__ = [
    "AuditEngine",
    "AuditReport",
    "CheckCount",
    "CrossCheckEngine",
    "CrossCheckFailure",
    "CrossCheckResult",
    "DEFAULT_TABLES",
    "Grade",
    "OverallHealth",
    "StoreUnavailable",
    "TableAuditResult",
    "TableScanFailure",
    "TableScanner",
    "TableSpec",
    "TableStatus",
    "build_default_checks",
    "grade_for",
    "load_universe",
    "overall_health",
    "status_for",
]
