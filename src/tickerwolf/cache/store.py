"""Snapshot store backends: key -> serialized IntradaySnapshot."""

from __future__ import annotations

import datetime
import threading
import time
from typing import Callable, Protocol, runtime_checkable

import redis
from pydantic import ValidationError

from tickerwolf.cache.models import IntradaySnapshot
from tickerwolf.utils.logging import get_logger

logger = get_logger(__name__)


class StoreError(Exception):
    """The snapshot store backend could not be read or written."""


def snapshot_key(namespace: str, symbol: str, trading_date: datetime.date) -> str:
    """``{namespace}:{SYMBOL}:{YYYY-MM-DD}``, e.g. ``intraday:snap:AAPL:2025-11-14``."""
    return f"{namespace}:{symbol.upper()}:{trading_date.isoformat()}"


@runtime_checkable
class SnapshotStore(Protocol):
    """Single-key atomic reads and writes of snapshots.

    Implementations raise StoreError on backend failure and return None for
    absent or expired keys.
    """

    def get(self, key: str) -> IntradaySnapshot | None:
        ...

    def put(self, key: str, snapshot: IntradaySnapshot) -> None:
        ...


class InMemorySnapshotStore:
    """Process-local store; entries expire ``ttl_seconds`` after they are written.

    Expired entries are dropped when read, and swept from the whole map at
    most once per ``ttl_seconds`` on write.
    """

    def __init__(
        self,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[IntradaySnapshot, float | None]] = {}
        self._next_sweep: float | None = None
        self._lock = threading.Lock()

    def get(self, key: str) -> IntradaySnapshot | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            snapshot, expires_at = entry
            if expires_at is not None and self._clock() >= expires_at:
                del self._entries[key]
                return None
            return snapshot

    def put(self, key: str, snapshot: IntradaySnapshot) -> None:
        now = self._clock()
        expires_at = now + self._ttl if self._ttl is not None else None
        with self._lock:
            if self._ttl is not None and (self._next_sweep is None or now >= self._next_sweep):
                self._sweep(now)
                self._next_sweep = now + self._ttl
            self._entries[key] = (snapshot, expires_at)

    def _sweep(self, now: float) -> None:
        expired = [k for k, (_, exp) in self._entries.items() if exp is not None and now >= exp]
        for k in expired:
            del self._entries[k]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisSnapshotStore:
    """Redis-backed store; each snapshot is one JSON string written with SETEX."""

    def __init__(self, client: redis.Redis, ttl_seconds: int) -> None:
        self._client = client
        self._ttl = ttl_seconds

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int) -> RedisSnapshotStore:
        return cls(redis.Redis.from_url(url), ttl_seconds)

    def get(self, key: str) -> IntradaySnapshot | None:
        try:
            raw = self._client.get(key)
        except redis.exceptions.RedisError as e:
            raise StoreError(f"Redis read failed for {key}: {e}") from e

        if raw is None:
            return None

        try:
            return IntradaySnapshot.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("snapshot_payload_invalid", key=key, error=str(e))
            return None

    def put(self, key: str, snapshot: IntradaySnapshot) -> None:
        try:
            self._client.setex(key, self._ttl, snapshot.model_dump_json())
        except redis.exceptions.RedisError as e:
            raise StoreError(f"Redis write failed for {key}: {e}") from e
