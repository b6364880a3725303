"""DuckDB connection management for the relational ticker store."""

from __future__ import annotations

import re
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import duckdb

from tickerwolf.storage.schema import TABLES
from tickerwolf.utils.logging import get_logger

logger = get_logger(__name__)

_SAFE_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class StoreUnavailable(Exception):
    """The relational store cannot be reached or is missing its core tables."""


def safe_ident(name: str) -> str:
    """Return ``name`` if it is a plain SQL identifier, else raise ValueError."""
    if not _SAFE_IDENT_RE.match(name or ""):
        raise ValueError(f"Unsafe identifier: {name!r}")
    return name


class DuckDBManager:
    """Manages DuckDB connection lifecycle and per-thread cursors."""

    def __init__(self, db_path: Path, read_only: bool = False) -> None:
        self._db_path = db_path
        self._read_only = read_only
        self._conn: duckdb.DuckDBPyConnection | None = None

    @contextmanager
    def connect(self) -> Generator[DuckDBManager, None, None]:
        """Context manager for DuckDB connection lifecycle."""
        if not self._read_only:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = duckdb.connect(str(self._db_path), read_only=self._read_only)
        except duckdb.Error as e:
            raise StoreUnavailable(f"Cannot open DuckDB store at {self._db_path}: {e}") from e
        try:
            yield self
        finally:
            self._conn.close()
            self._conn = None

    @contextmanager
    def cursor(self) -> Generator[duckdb.DuckDBPyConnection, None, None]:
        """A cursor owned by the calling thread; DuckDB connections are not thread-safe."""
        if self._conn is None:
            raise StoreUnavailable("Not connected. Use `with manager.connect():`")
        try:
            cur = self._conn.cursor()
        except duckdb.Error as e:
            raise StoreUnavailable(f"Cannot open cursor on {self._db_path}: {e}") from e
        try:
            yield cur
        finally:
            cur.close()

    def create_schema(self) -> list[str]:
        """Create any missing ticker tables. Returns the table names ensured."""
        with self.cursor() as cur:
            for name, ddl in TABLES.items():
                cur.execute(ddl)
                logger.debug("table_ensured", table=name)
        return list(TABLES)

    def execute(self, sql: str, params: list | None = None) -> list[tuple]:
        """Execute SQL and return all rows."""
        with self.cursor() as cur:
            return cur.execute(sql, params or []).fetchall()

    def table_exists(self, name: str) -> bool:
        rows = self.execute(
            "SELECT 1 FROM information_schema.tables WHERE table_name = ?", [name]
        )
        return bool(rows)

    def table_info(self) -> list[dict]:
        """Return metadata about all tables."""
        tables = self.execute("SHOW TABLES")
        info = []
        for (name,) in tables:
            try:
                count = self.execute(f"SELECT COUNT(*) FROM {safe_ident(name)}")[0][0]
                cols = self.execute(f"DESCRIBE {safe_ident(name)}")
                info.append({
                    "name": name,
                    "rows": count,
                    "columns": len(cols),
                    "column_names": [c[0] for c in cols],
                })
            except (duckdb.Error, ValueError) as e:
                info.append({"name": name, "error": str(e)})

        return info
