"""Shared test fixtures."""

from __future__ import annotations

import datetime
import threading
from pathlib import Path

import pytest

from tickerwolf.cache.models import OHLCVBar
from tickerwolf.providers.base import NotFound
from tickerwolf.storage.duckdb_manager import DuckDBManager

# Wednesday, after the US close.
AUDIT_NOW = datetime.datetime(2024, 1, 10, 21, 0, tzinfo=datetime.timezone.utc)

# 10:30 America/New_York on a Wednesday.
MARKET_NOW = datetime.datetime(2024, 1, 10, 15, 30, tzinfo=datetime.timezone.utc)

TICKERS = [
    (1, "AAPL", True),
    (2, "MSFT", True),
    (3, "GOOG", True),
    (4, "TSLA", True),
    (5, "OLD", False),
]

# The seeded store carries exactly one anomaly of each kind:
#   price bars: TSLA uncovered, one duplicate AAPL bar, one MSFT bar with
#               high < close, one bar for unknown ticker 99
#   snapshots:  TSLA uncovered, one duplicate AAPL row, GOOG indicators '{}'
#   metrics:    GOOG uncovered, newest row 2023-12-20 (15 trading days behind)
PRICE_ROWS = [
    (1, "1d", "2024-01-09", 10.0, 11.0, 9.0, 10.5, 100),
    (1, "1d", "2024-01-10", 10.0, 11.0, 9.0, 10.5, 100),
    (2, "1d", "2024-01-09", 20.0, 21.0, 19.0, 20.5, 200),
    (2, "1d", "2024-01-10", 20.0, 21.0, 19.0, 20.5, 200),
    (3, "1d", "2024-01-09", 30.0, 31.0, 29.0, 30.5, 300),
    (3, "1d", "2024-01-10", 30.0, 31.0, 29.0, 30.5, 300),
    (1, "1d", "2024-01-10", 10.0, 11.0, 9.0, 10.5, 100),
    (2, "1d", "2024-01-08", 20.0, 20.2, 19.0, 20.5, 200),
    (99, "1d", "2024-01-10", 5.0, 6.0, 4.0, 5.5, 50),
]
INDICATOR_ROWS = [
    (tid, "1d", "2024-01-10", "rsi_14", 55.0, '{"window": 14}') for tid in (1, 2, 3, 4)
]
SNAPSHOT_ROWS = [
    (1, "2024-01-10", '{"rsi_14": 55.0}', "[0.1, 0.2]"),
    (2, "2024-01-10", '{"rsi_14": 48.2}', "[0.3, 0.1]"),
    (3, "2024-01-10", "{}", "[0.0, 0.0]"),
    (1, "2024-01-10", '{"rsi_14": 55.0}', "[0.1, 0.2]"),
]
METRIC_ROWS = [
    (tid, "2023-12-20", 1.1, 0.2, -0.05, 1.0, 0.03) for tid in (1, 2, 4)
]


def seed_store(db: DuckDBManager) -> None:
    db.create_schema()
    with db.cursor() as cur:
        cur.executemany(
            "INSERT INTO tickers (id, ticker, active) VALUES (?, ?, ?)", TICKERS
        )
        cur.executemany(
            "INSERT INTO ticker_price_histories (ticker_id, resolution, t, o, h, l, c, v) "
            "VALUES (?, ?, CAST(? AS TIMESTAMP), ?, ?, ?, ?, ?)",
            PRICE_ROWS,
        )
        cur.executemany(
            "INSERT INTO ticker_indicators (ticker_id, resolution, t, indicator, value, meta) "
            "VALUES (?, ?, CAST(? AS TIMESTAMP), ?, ?, ?)",
            INDICATOR_ROWS,
        )
        cur.executemany(
            "INSERT INTO ticker_feature_snapshots (ticker_id, t, indicators, embedding) "
            "VALUES (?, CAST(? AS DATE), ?, ?)",
            SNAPSHOT_ROWS,
        )
        cur.executemany(
            "INSERT INTO ticker_feature_metrics "
            "(ticker_id, t, sharpe_60, volatility_30, drawdown, beta_60, momentum_10) "
            "VALUES (?, CAST(? AS DATE), ?, ?, ?, ?, ?)",
            METRIC_ROWS,
        )


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.duckdb"


@pytest.fixture
def empty_db(db_path: Path):
    """A connected store with the schema and no rows."""
    manager = DuckDBManager(db_path)
    with manager.connect() as db:
        db.create_schema()
        yield db


@pytest.fixture
def seeded_db(db_path: Path):
    """A connected store holding the TICKERS universe and its child rows."""
    manager = DuckDBManager(db_path)
    with manager.connect() as db:
        seed_store(db)
        yield db


@pytest.fixture
def audit_clock():
    return lambda: AUDIT_NOW


class MutableClock:
    """A settable UTC clock for cache tests."""

    def __init__(self, now: datetime.datetime = MARKET_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += datetime.timedelta(seconds=seconds)


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


def make_bars(
    start: datetime.datetime = MARKET_NOW - datetime.timedelta(minutes=3),
    count: int = 3,
    price: float = 100.0,
) -> list[OHLCVBar]:
    return [
        OHLCVBar(
            timestamp=start + datetime.timedelta(minutes=i),
            open=price + i,
            high=price + i + 1,
            low=price + i - 1,
            close=price + i + 0.5,
            volume=1000 + i,
        )
        for i in range(count)
    ]


class StubClient:
    """A MarketDataClient that returns canned bars and counts calls.

    ``responses`` maps symbols to a bar list or an exception to raise;
    unknown symbols raise NotFound. ``gate`` (when set) blocks every call
    until released so tests can hold a fetch in flight.
    """

    source_name = "stub"

    def __init__(self, responses: dict | None = None, gate: threading.Event | None = None) -> None:
        self.responses = dict(responses or {})
        self.gate = gate
        self.calls: list[tuple[str, datetime.date]] = []
        self.started = threading.Event()
        self._lock = threading.Lock()

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.calls)

    def fetch_bars(self, symbol: str, trading_date: datetime.date) -> list[OHLCVBar]:
        with self._lock:
            self.calls.append((symbol, trading_date))
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        outcome = self.responses.get(symbol)
        if outcome is None:
            raise NotFound(f"no bars for {symbol}")
        if isinstance(outcome, BaseException):
            raise outcome
        return list(outcome)


@pytest.fixture
def stub_client() -> StubClient:
    return StubClient({"AAPL": make_bars(), "MSFT": make_bars(price=300.0)})
