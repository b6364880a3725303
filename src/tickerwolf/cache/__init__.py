"""Intraday snapshot cache."""

from tickerwolf.cache.factory import build_snapshot_cache, build_store
from tickerwolf.cache.models import CacheEntryState, IntradaySnapshot, OHLCVBar, TickerRef
from tickerwolf.cache.snapshot_cache import SnapshotCache
from tickerwolf.cache.store import (
    InMemorySnapshotStore,
    RedisSnapshotStore,
    SnapshotStore,
    StoreError,
    snapshot_key,
)

__all__ = [
    "CacheEntryState",
    "InMemorySnapshotStore",
    "IntradaySnapshot",
    "OHLCVBar",
    "RedisSnapshotStore",
    "SnapshotCache",
    "SnapshotStore",
    "StoreError",
    "TickerRef",
    "build_snapshot_cache",
    "build_store",
    "snapshot_key",
]
