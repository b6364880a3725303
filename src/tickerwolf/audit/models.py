"""Data models for audit results."""

from __future__ import annotations

import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class TableStatus(str, Enum):
    OK = "OK"
    WARN = "WARN"
    FAIL = "FAIL"


class Grade(str, Enum):
    EXCELLENT = "Excellent"
    GOOD = "Good"
    POOR = "Poor"


OK_THRESHOLD = 95.0
WARN_THRESHOLD = 80.0


def status_for(health_percent: float) -> TableStatus:
    if health_percent >= OK_THRESHOLD:
        return TableStatus.OK
    if health_percent >= WARN_THRESHOLD:
        return TableStatus.WARN
    return TableStatus.FAIL


def grade_for(health_percent: float) -> Grade:
    if health_percent >= OK_THRESHOLD:
        return Grade.EXCELLENT
    if health_percent >= WARN_THRESHOLD:
        return Grade.GOOD
    return Grade.POOR


def clamp_percent(value: float) -> float:
    return round(min(100.0, max(0.0, value)), 2)


class TableAuditResult(BaseModel):
    """Health of one audited table."""

    model_config = ConfigDict(frozen=True)

    table_name: str
    row_count: int = Field(ge=0)
    completeness_ratio: float = Field(ge=0, le=1)
    freshness_ratio: float = Field(ge=0, le=1)
    health_percent: float = Field(ge=0, le=100)
    status: TableStatus
    tickers_expected: int = Field(default=0, ge=0)
    tickers_covered: int = Field(default=0, ge=0)
    latest_at: datetime.date | None = None
    error: str | None = None
    missing_tickers: list[str] | None = None

    @classmethod
    def failed(cls, table_name: str, error: str) -> TableAuditResult:
        """Result recorded for a table whose scan raised."""
        return cls(
            table_name=table_name,
            row_count=0,
            completeness_ratio=0.0,
            freshness_ratio=0.0,
            health_percent=0.0,
            status=TableStatus.FAIL,
            error=error,
        )


class CrossCheckResult(BaseModel):
    """Outcome of one cross-table consistency check.

    Exactly one of ``anomaly_count`` and ``error`` is set. A failed check
    carries its error and no count.
    """

    model_config = ConfigDict(frozen=True)

    label: str
    anomaly_count: int | None = Field(default=None, ge=0)
    error: str | None = None
    offenders: list[str] | None = None

    @model_validator(mode="after")
    def _count_xor_error(self) -> CrossCheckResult:
        if (self.anomaly_count is None) == (self.error is None):
            raise ValueError("exactly one of anomaly_count and error must be set")
        return self

    @property
    def failed(self) -> bool:
        return self.error is not None


class OverallHealth(BaseModel):
    model_config = ConfigDict(frozen=True)

    system_health_percent: float = Field(ge=0, le=100)
    grade: Grade


class AuditReport(BaseModel):
    """One audit run: per-table results, cross-checks and the weighted summary."""

    model_config = ConfigDict(frozen=True)

    tables: dict[str, TableAuditResult]
    cross: dict[str, CrossCheckResult]
    overall: OverallHealth
    generated_at: datetime.datetime

    @property
    def failed_tables(self) -> list[str]:
        return [name for name, t in self.tables.items() if t.status == TableStatus.FAIL]

    @property
    def failed_checks(self) -> list[str]:
        return [label for label, c in self.cross.items() if c.failed]
