"""Trading calendar and date utilities."""

from __future__ import annotations

import datetime
from zoneinfo import ZoneInfo


def last_trading_day(ref_date: datetime.date | None = None) -> datetime.date:
    """Return the most recent trading day (Mon-Fri, not accounting for holidays)."""
    if ref_date is None:
        ref_date = datetime.date.today()

    d = ref_date
    while d.weekday() >= 5:  # 5=Saturday, 6=Sunday
        d -= datetime.timedelta(days=1)
    return d


def trading_days_between(
    start: datetime.date, end: datetime.date
) -> list[datetime.date]:
    """Return weekdays between start and end (inclusive). Excludes weekends."""
    days = []
    current = start
    while current <= end:
        if current.weekday() < 5:
            days.append(current)
        current += datetime.timedelta(days=1)
    return days


def trading_days_behind(latest: datetime.date, ref_date: datetime.date) -> int:
    """Count trading days ``latest`` lags the last trading day on or before ``ref_date``.

    A weekend ``latest`` counts as the Friday before it; anything at or past
    the reference trading day is 0 behind.
    """
    target = last_trading_day(ref_date)
    anchor = last_trading_day(latest)
    if anchor >= target:
        return 0
    return len(trading_days_between(anchor, target)) - 1


def market_date(now: datetime.datetime, timezone: str) -> datetime.date:
    """Calendar date of an aware instant in the given market time zone."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=datetime.timezone.utc)
    return now.astimezone(ZoneInfo(timezone)).date()


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)
