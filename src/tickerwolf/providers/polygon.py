"""Polygon.io aggregates client for 1-minute intraday bars."""

from __future__ import annotations

import datetime
import time
from typing import Callable

import httpx
from pydantic import ValidationError

from tickerwolf.cache.models import OHLCVBar
from tickerwolf.config.settings import PolygonSettings
from tickerwolf.providers.base import (
    DataSourceUnavailable,
    FetchError,
    NotFound,
    RateLimit,
    RateLimited,
)
from tickerwolf.utils.logging import get_logger
from tickerwolf.utils.rate_limiter import RateLimiter

logger = get_logger(__name__)


class PolygonClient:
    """Fetches 1-minute OHLCV bars from the Polygon aggregates endpoint.

    Retries 429 and 5xx responses (and transport errors) with backoff,
    then maps the final outcome onto the typed FetchError hierarchy.
    """

    source_name = "polygon"

    def __init__(
        self,
        settings: PolygonSettings,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._api_key = settings.api_key.get_secret_value()
        self._base_url = settings.base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=settings.request_timeout)
        self._max_retries = settings.max_retries
        self._backoff = settings.retry_backoff
        self._max_retry_after = settings.max_retry_after
        self._sleep = sleep
        self._rate_limit = RateLimit(calls_per_minute=settings.calls_per_minute)
        self._limiter = RateLimiter(self._rate_limit, sleep=sleep)

    @property
    def rate_limit(self) -> RateLimit:
        return self._rate_limit

    def fetch_bars(self, symbol: str, trading_date: datetime.date) -> list[OHLCVBar]:
        """Fetch the extended-hours minute bars of one trading date, oldest first."""
        if not self._api_key:
            raise DataSourceUnavailable("Polygon API key not configured (set POLYGON_API_KEY)")

        day = trading_date.isoformat()
        url = f"{self._base_url}/v2/aggs/ticker/{symbol}/range/1/minute/{day}/{day}"
        params = {
            "adjusted": "true",
            "sort": "asc",
            "limit": 50000,
            "apiKey": self._api_key,
        }

        last_error: FetchError | None = None
        for attempt in range(1, self._max_retries + 1):
            self._limiter.wait()
            logger.debug("polygon_request", symbol=symbol, date=day, attempt=attempt)

            try:
                response = self._client.get(url, params=params)
            except httpx.TimeoutException as e:
                last_error = DataSourceUnavailable(f"Polygon request timed out for {symbol}: {e}")
                delay = self._backoff * 2 ** (attempt - 1)
            except httpx.HTTPError as e:
                last_error = DataSourceUnavailable(f"Polygon HTTP error for {symbol}: {e}")
                delay = self._backoff * 2 ** (attempt - 1)
            else:
                status = response.status_code
                if response.is_success:
                    return self._parse(symbol, trading_date, response)
                if status == 404:
                    raise NotFound(f"Polygon has no aggregates for {symbol} ({day})")
                if status == 429:
                    retry_after = _retry_after(response)
                    last_error = RateLimited(
                        f"Polygon rate limit hit for {symbol}", retry_after=retry_after
                    )
                    delay = min(
                        retry_after if retry_after is not None else self._backoff * 2 ** (attempt - 1),
                        self._max_retry_after,
                    )
                elif response.is_server_error:
                    last_error = DataSourceUnavailable(
                        f"Polygon server error {status} for {symbol}"
                    )
                    delay = self._backoff * 2 ** (attempt - 1)
                else:
                    raise DataSourceUnavailable(
                        f"Polygon client error {status} for {symbol}: {response.text[:300]}"
                    )

            logger.warning(
                "polygon_retry",
                symbol=symbol,
                attempt=attempt,
                reason=last_error.reason,
                error=str(last_error),
            )
            if attempt < self._max_retries:
                self._sleep(delay)

        assert last_error is not None
        raise last_error

    def _parse(
        self, symbol: str, trading_date: datetime.date, response: httpx.Response
    ) -> list[OHLCVBar]:
        try:
            payload = response.json()
        except ValueError as e:
            raise DataSourceUnavailable(f"Invalid JSON from Polygon for {symbol}") from e

        if not isinstance(payload, dict):
            raise DataSourceUnavailable(f"Unexpected Polygon payload for {symbol}")

        bars: list[OHLCVBar] = []
        skipped = 0
        for raw in payload.get("results") or []:
            if not isinstance(raw, dict) or "t" not in raw:
                skipped += 1
                continue
            try:
                bars.append(
                    OHLCVBar(
                        timestamp=datetime.datetime.fromtimestamp(
                            int(raw["t"]) / 1000, tz=datetime.timezone.utc
                        ),
                        open=raw["o"],
                        high=raw["h"],
                        low=raw["l"],
                        close=raw["c"],
                        volume=raw.get("v", 0),
                    )
                )
            except (KeyError, TypeError, ValueError, ValidationError):
                skipped += 1

        if skipped:
            logger.warning("polygon_bars_skipped", symbol=symbol, skipped=skipped)

        if not bars:
            raise NotFound(
                f"No intraday bars from Polygon for {symbol} ({trading_date.isoformat()})"
            )

        bars.sort(key=lambda b: b.timestamp)
        logger.info("fetch_complete", source=self.source_name, symbol=symbol, rows=len(bars))
        return bars


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None
