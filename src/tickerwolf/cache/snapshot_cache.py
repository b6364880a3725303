"""Intraday snapshot cache: freshness window, single-flight fetches, stale fallback.

Per (symbol, trading_date) key the cache moves through

    Missing -[fetch ok]-> Fresh -[window elapses]-> Stale -[fetch ok]-> Fresh
    Missing -[fetch fails]-> Missing (miss)
    Stale   -[fetch fails]-> Stale (old snapshot served)

with Fetching as a transient state entered from Missing/Stale, or from
Fresh when a refresh is forced. ``get`` never raises: every upstream or
store failure resolves to a snapshot or an explicit miss (None).
"""

from __future__ import annotations

import concurrent.futures
import datetime
from collections.abc import Iterable, Mapping
from typing import Callable

from pydantic import ValidationError

from tickerwolf.cache.models import CacheEntryState, IntradaySnapshot, TickerRef
from tickerwolf.cache.singleflight import SingleFlight
from tickerwolf.cache.store import SnapshotStore, StoreError, snapshot_key
from tickerwolf.providers.base import (
    DataSourceUnavailable,
    FetchError,
    MarketDataClient,
    NotFound,
)
from tickerwolf.utils.dates import market_date, utc_now
from tickerwolf.utils.logging import get_logger

logger = get_logger(__name__)

TickerLike = str | TickerRef | Mapping


def _symbol_of(ticker: TickerLike) -> str:
    if isinstance(ticker, str):
        symbol = ticker
    elif isinstance(ticker, TickerRef):
        symbol = ticker.symbol
    elif isinstance(ticker, Mapping):
        symbol = ticker.get("symbol") or ticker.get("ticker") or ""
    else:
        raise TypeError(f"Unsupported ticker reference: {ticker!r}")
    return str(symbol).strip().upper()


class SnapshotCache:
    """Serves intraday snapshots while shielding the upstream client."""

    def __init__(
        self,
        client: MarketDataClient,
        store: SnapshotStore,
        *,
        namespace: str = "intraday:snap",
        freshness: datetime.timedelta = datetime.timedelta(seconds=60),
        fetch_timeout: float = 15.0,
        max_workers: int = 8,
        market_timezone: str = "America/New_York",
        fallback_lookback_days: int = 5,
        clock: Callable[[], datetime.datetime] = utc_now,
    ) -> None:
        self._client = client
        self._store = store
        self._namespace = namespace
        self._freshness = freshness
        self._fetch_timeout = fetch_timeout
        self._max_workers = max_workers
        self._timezone = market_timezone
        self._lookback_days = fallback_lookback_days
        self._clock = clock
        self._flights: SingleFlight[IntradaySnapshot | None] = SingleFlight()
        self._fetch_pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="intraday-fetch"
        )
        self._closed = False

    def __enter__(self) -> SnapshotCache:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Release the fetch pool without waiting on abandoned calls.

        Later ``get`` calls still serve stored snapshots but treat any fetch as failed.
        """
        self._closed = True
        self._fetch_pool.shutdown(wait=False, cancel_futures=True)

    @property
    def freshness(self) -> datetime.timedelta:
        return self._freshness

    def trading_date(self) -> datetime.date:
        return market_date(self._clock(), self._timezone)

    def key_for(self, symbol: str, trading_date: datetime.date | None = None) -> str:
        return snapshot_key(self._namespace, symbol, trading_date or self.trading_date())

    def get(self, symbol: str, force: bool = False) -> IntradaySnapshot | None:
        """Return today's snapshot for ``symbol``, fetching when stale, missing or forced."""
        symbol = _symbol_of(symbol)
        trading_date = self.trading_date()
        key = self.key_for(symbol, trading_date)

        if not force:
            cached = self._read(key)
            if cached is not None and self._is_fresh(cached):
                return cached

        # A forced caller waits out any fetch already in flight and then runs
        # its own, so it always gets an upstream call issued after it arrived.
        snapshot, shared = self._flights.do(
            key, lambda: self._refresh(symbol, trading_date, key, force), join=not force
        )
        if shared:
            logger.debug("intraday_fetch_shared", symbol=symbol, key=key)
        return snapshot

    def warm_many(self, tickers: Iterable[TickerLike], force: bool = False) -> int:
        """Apply ``get`` to every distinct symbol; return how many ended with a snapshot."""
        symbols = list(dict.fromkeys(s for s in map(_symbol_of, tickers) if s))
        if not symbols:
            return 0

        warmed = 0
        workers = min(self._max_workers, len(symbols))
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="intraday-warm"
        ) as pool:
            future_to_symbol = {pool.submit(self.get, s, force): s for s in symbols}
            for future in concurrent.futures.as_completed(future_to_symbol):
                symbol = future_to_symbol[future]
                try:
                    snapshot = future.result()
                except Exception:
                    logger.exception("intraday_warm_failed", symbol=symbol)
                    continue
                if snapshot is not None:
                    warmed += 1

        logger.info(
            "intraday_warm_complete",
            requested=len(symbols),
            warmed=warmed,
            force=force,
        )
        return warmed

    def state(self, symbol: str) -> CacheEntryState:
        """Report the derived state of today's key for ``symbol``."""
        symbol = _symbol_of(symbol)
        key = self.key_for(symbol)
        if self._flights.in_flight(key):
            return CacheEntryState.FETCHING
        cached = self._read(key)
        if cached is None:
            return CacheEntryState.MISSING
        return CacheEntryState.FRESH if self._is_fresh(cached) else CacheEntryState.STALE

    def _refresh(
        self,
        symbol: str,
        trading_date: datetime.date,
        key: str,
        force: bool,
    ) -> IntradaySnapshot | None:
        prior = self._read(key)
        if not force and prior is not None and self._is_fresh(prior):
            # Another flight finished between our freshness check and this one.
            return prior

        logger.info("fetching_intraday", symbol=symbol, date=trading_date.isoformat(), force=force)

        try:
            snapshot = self._fetch(symbol, trading_date)
        except FetchError as e:
            return self._on_failure(symbol, trading_date, prior, e)

        self._write(key, snapshot)

        logger.info(
            "intraday_snapshot_cached",
            symbol=symbol,
            key=key,
            bars=len(snapshot.bars),
            as_of=snapshot.as_of.isoformat() if snapshot.as_of else None,
        )
        return snapshot

    def _fetch(self, symbol: str, trading_date: datetime.date) -> IntradaySnapshot:
        if self._closed:
            raise DataSourceUnavailable("Snapshot cache is closed")
        try:
            future = self._fetch_pool.submit(self._client.fetch_bars, symbol, trading_date)
        except RuntimeError as e:
            raise DataSourceUnavailable(f"Cannot schedule fetch for {symbol}: {e}") from e

        try:
            bars = future.result(timeout=self._fetch_timeout)
        except concurrent.futures.TimeoutError as e:
            future.cancel()
            raise DataSourceUnavailable(
                f"Upstream fetch for {symbol} exceeded {self._fetch_timeout}s"
            ) from e
        except FetchError:
            raise
        except Exception as e:
            raise DataSourceUnavailable(f"Upstream fetch failed for {symbol}: {e}") from e

        if not bars:
            raise NotFound(f"No intraday bars for {symbol} on {trading_date.isoformat()}")

        previous = self._find_recent(symbol, trading_date)
        try:
            return IntradaySnapshot(
                symbol=symbol,
                trading_date=trading_date,
                bars=tuple(bars),
                fetched_at=self._clock(),
                prev_close=previous.last_price if previous is not None else None,
            )
        except ValidationError as e:
            raise DataSourceUnavailable(f"Malformed bars from upstream for {symbol}: {e}") from e

    def _on_failure(
        self,
        symbol: str,
        trading_date: datetime.date,
        prior: IntradaySnapshot | None,
        error: FetchError,
    ) -> IntradaySnapshot | None:
        if prior is not None:
            logger.warning(
                "intraday_fetch_failed",
                symbol=symbol,
                reason=error.reason,
                error=str(error),
                serving="stale",
                fetched_at=prior.fetched_at.isoformat(),
            )
            return prior

        if isinstance(error, NotFound):
            fallback = self._find_recent(symbol, trading_date)
            if fallback is not None:
                logger.warning(
                    "intraday_fetch_failed",
                    symbol=symbol,
                    reason=error.reason,
                    error=str(error),
                    serving="fallback",
                    fallback_date=fallback.trading_date.isoformat(),
                )
                return fallback

        logger.warning(
            "intraday_fetch_failed",
            symbol=symbol,
            reason=error.reason,
            error=str(error),
            serving="miss",
        )
        return None

    def _find_recent(self, symbol: str, trading_date: datetime.date) -> IntradaySnapshot | None:
        """Most recent snapshot cached under one of the previous few dates (weekends, holidays)."""
        for days_back in range(1, self._lookback_days + 1):
            day = trading_date - datetime.timedelta(days=days_back)
            snapshot = self._read(self.key_for(symbol, day))
            if snapshot is not None and snapshot.bars:
                return snapshot
        return None

    def _is_fresh(self, snapshot: IntradaySnapshot) -> bool:
        return snapshot.is_fresh(self._clock(), self._freshness)

    def _read(self, key: str) -> IntradaySnapshot | None:
        try:
            return self._store.get(key)
        except StoreError as e:
            logger.warning("snapshot_store_read_failed", key=key, error=str(e))
            return None

    def _write(self, key: str, snapshot: IntradaySnapshot) -> None:
        try:
            self._store.put(key, snapshot)
        except StoreError as e:
            logger.warning("snapshot_store_write_failed", key=key, error=str(e))
