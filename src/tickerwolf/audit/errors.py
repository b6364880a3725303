"""Audit failure types."""

from __future__ import annotations

from tickerwolf.storage.duckdb_manager import StoreUnavailable

__all__ = ["CrossCheckFailure", "StoreUnavailable", "TableScanFailure"]


class TableScanFailure(Exception):
    """One table could not be scanned; the audit records it and continues."""

    def __init__(self, table: str, reason: str) -> None:
        super().__init__(f"{table}: {reason}")
        self.table = table
        self.reason = reason


class CrossCheckFailure(Exception):
    """One cross-check could not be evaluated; recorded as an error marker."""

    def __init__(self, label: str, reason: str) -> None:
        super().__init__(f"{label}: {reason}")
        self.label = label
        self.reason = reason
