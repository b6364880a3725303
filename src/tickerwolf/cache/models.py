"""Data models for intraday snapshots."""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from enum import Enum
from zoneinfo import ZoneInfo

import polars as pl
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class OHLCVBar(BaseModel):
    """One 1-minute open/high/low/close/volume sample."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime.datetime
    open: float = Field(ge=0)
    high: float = Field(ge=0)
    low: float = Field(ge=0)
    close: float = Field(ge=0)
    volume: float = Field(ge=0)

    @field_validator("timestamp")
    @classmethod
    def _aware(cls, v: datetime.datetime) -> datetime.datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=datetime.timezone.utc)
        return v

    @model_validator(mode="after")
    def _within_range(self) -> OHLCVBar:
        if self.low > min(self.open, self.close) or self.high < max(self.open, self.close):
            raise ValueError(
                f"bar at {self.timestamp.isoformat()} violates low <= open,close <= high"
            )
        return self


class Session(str, Enum):
    OVERNIGHT = "overnight"
    PRE = "pre"
    REGULAR = "regular"
    AFTER = "after"


SESSION_LABELS = {
    Session.OVERNIGHT: "Overnight session",
    Session.PRE: "Pre-market",
    Session.REGULAR: "Regular session",
    Session.AFTER: "After hours",
}


def classify_session(ts: datetime.datetime, timezone: str = "America/New_York") -> Session:
    """Bucket an instant into the extended-hours session it falls in (market time)."""
    local = ts.astimezone(ZoneInfo(timezone))
    hhmm = local.hour * 100 + local.minute
    if hhmm >= 2000 or hhmm < 400:
        return Session.OVERNIGHT
    if hhmm < 930:
        return Session.PRE
    if hhmm < 1600:
        return Session.REGULAR
    return Session.AFTER


class IntradaySnapshot(BaseModel):
    """The most recent bar-set fetched for one (symbol, trading_date) key."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    trading_date: datetime.date
    bars: tuple[OHLCVBar, ...]
    fetched_at: datetime.datetime
    prev_close: float | None = Field(default=None, ge=0)

    @field_validator("bars")
    @classmethod
    def _ascending(cls, v: tuple[OHLCVBar, ...]) -> tuple[OHLCVBar, ...]:
        for prev, cur in zip(v, v[1:]):
            if cur.timestamp < prev.timestamp:
                raise ValueError("bars must be ordered by ascending timestamp")
        return v

    @field_validator("fetched_at")
    @classmethod
    def _fetched_aware(cls, v: datetime.datetime) -> datetime.datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=datetime.timezone.utc)
        return v

    def age(self, now: datetime.datetime) -> datetime.timedelta:
        return now - self.fetched_at

    def is_fresh(self, now: datetime.datetime, window: datetime.timedelta) -> bool:
        """Fresh iff ``now - fetched_at < window``."""
        return self.age(now) < window

    @property
    def as_of(self) -> datetime.datetime | None:
        return self.bars[-1].timestamp if self.bars else None

    @property
    def last_price(self) -> float | None:
        return self.bars[-1].close if self.bars else None

    @property
    def day_high(self) -> float | None:
        return max((b.high for b in self.bars), default=None)

    @property
    def day_low(self) -> float | None:
        return min((b.low for b in self.bars), default=None)

    @property
    def volume(self) -> float:
        return sum(b.volume for b in self.bars)

    @property
    def change_abs(self) -> float | None:
        """Last price minus the previous session close, when both are known."""
        if self.last_price is None or not self.prev_close:
            return None
        return self.last_price - self.prev_close

    @property
    def change_pct(self) -> float | None:
        change = self.change_abs
        if change is None:
            return None
        return change / self.prev_close * 100

    def session(self, timezone: str = "America/New_York") -> Session | None:
        """Session of the latest bar, or None for an empty snapshot."""
        if self.as_of is None:
            return None
        return classify_session(self.as_of, timezone)

    def to_frame(self) -> pl.DataFrame:
        """Bars as a Polars DataFrame (one row per bar)."""
        return pl.DataFrame(
            [bar.model_dump() for bar in self.bars],
            schema={
                "timestamp": pl.Datetime("us", "UTC"),
                "open": pl.Float64,
                "high": pl.Float64,
                "low": pl.Float64,
                "close": pl.Float64,
                "volume": pl.Float64,
            },
        )


class CacheEntryState(str, Enum):
    """Derived per-key state; never stored."""

    MISSING = "missing"
    FETCHING = "fetching"
    FRESH = "fresh"
    STALE = "stale"


@dataclass(frozen=True)
class TickerRef:
    """A ticker row as handed to batch warm-up: primary key plus symbol."""

    id: int
    symbol: str
