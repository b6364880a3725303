# Builds snapshot stores and caches from settings.

from __future__ import annotations

import datetime
from typing import TYPE_CHECKING

from tickerwolf.cache.snapshot_cache import SnapshotCache
from tickerwolf.cache.store import InMemorySnapshotStore, RedisSnapshotStore, SnapshotStore

if TYPE_CHECKING:
    from tickerwolf.config.settings import AppSettings, IntradaySettings
    from tickerwolf.providers.base import MarketDataClient


def build_store(settings: IntradaySettings) -> SnapshotStore:
    """Create the snapshot store selected by ``settings.store_backend``."""
    if settings.store_backend == "redis":
        return RedisSnapshotStore.from_url(settings.redis_url, settings.store_ttl_seconds)
    return InMemorySnapshotStore(ttl_seconds=settings.store_ttl_seconds)


def build_snapshot_cache(
    settings: AppSettings,
    client: MarketDataClient | None = None,
    store: SnapshotStore | None = None,
) -> SnapshotCache:
    """Wire a SnapshotCache to the Polygon client and configured store.

    Lazy-imports the Polygon client so callers injecting their own client
    do not need an HTTP stack configured.
    """
    if client is None:
        from tickerwolf.providers.polygon import PolygonClient

        client = PolygonClient(settings.polygon)

    intraday = settings.intraday
    return SnapshotCache(
        client,
        store if store is not None else build_store(intraday),
        namespace=intraday.namespace,
        freshness=datetime.timedelta(seconds=intraday.freshness_seconds),
        fetch_timeout=intraday.fetch_timeout_seconds,
        max_workers=intraday.max_workers,
        market_timezone=intraday.market_timezone,
        fallback_lookback_days=intraday.fallback_lookback_days,
    )
