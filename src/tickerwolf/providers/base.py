"""Market data client Protocol, typed fetch failures and supporting types."""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from tickerwolf.cache.models import OHLCVBar


@dataclass(frozen=True)
class RateLimit:
    """Rate limit configuration for an API source."""

    calls_per_minute: int
    calls_per_day: int | None = None  # None means unlimited


class FetchError(Exception):
    """Base exception for all upstream fetch failures."""

    reason = "error"


class NotFound(FetchError):
    """The upstream has no bars for the symbol/date (unknown symbol, weekend, holiday)."""

    reason = "not_found"


class RateLimited(FetchError):
    """The upstream refused the call because of rate limiting."""

    reason = "rate_limited"

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class DataSourceUnavailable(FetchError):
    """Transport failure, timeout, server error or misconfiguration."""

    reason = "unavailable"


@runtime_checkable
class MarketDataClient(Protocol):
    """Protocol every intraday bar source must fulfill.

    Uses structural subtyping, so test stubs conform without inheriting.
    """

    @property
    def source_name(self) -> str:
        """Short identifier for this source, e.g. 'polygon'."""
        ...

    def fetch_bars(
        self, symbol: str, trading_date: datetime.date
    ) -> list[OHLCVBar]:
        """Return the 1-minute bars for ``symbol`` on ``trading_date``, oldest first.

        Raises a FetchError subclass on failure; never returns an empty list.
        """
        ...
