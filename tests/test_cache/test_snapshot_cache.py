"""Tests for the intraday snapshot cache."""

from __future__ import annotations

import datetime
import threading
import time

import pytest

from conftest import MARKET_NOW, MutableClock, StubClient, make_bars
from tickerwolf.cache.models import CacheEntryState, IntradaySnapshot, TickerRef
from tickerwolf.cache.snapshot_cache import SnapshotCache
from tickerwolf.cache.store import InMemorySnapshotStore, StoreError
from tickerwolf.providers.base import DataSourceUnavailable, RateLimited

TODAY = datetime.date(2024, 1, 10)


def _cache(client, clock, store=None, **kwargs) -> SnapshotCache:
    return SnapshotCache(
        client,
        store if store is not None else InMemorySnapshotStore(),
        clock=clock,
        **kwargs,
    )


def _wait_for_waiters(cache: SnapshotCache, key: str, n: int, timeout: float = 5.0) -> None:
    flights = cache._flights
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        with flights._mu:
            call = flights._calls.get(key)
            if call is not None and call.waiters >= n:
                return
        time.sleep(0.005)
    raise AssertionError(f"expected {n} waiters on {key!r}")


class BrokenStore:
    def get(self, key):
        raise StoreError("redis down")

    def put(self, key, snapshot):
        raise StoreError("redis down")


@pytest.fixture
def store() -> InMemorySnapshotStore:
    return InMemorySnapshotStore()


@pytest.fixture
def cache(stub_client, clock, store):
    with _cache(stub_client, clock, store) as c:
        yield c


def test_trading_date_uses_market_timezone(stub_client):
    # 03:00 UTC on the 11th is still the evening of the 10th in New York.
    late = MutableClock(datetime.datetime(2024, 1, 11, 3, 0, tzinfo=datetime.timezone.utc))
    with _cache(stub_client, late) as cache:
        assert cache.trading_date() == TODAY
        assert cache.key_for("aapl") == "intraday:snap:AAPL:2024-01-10"


def test_missing_key_fetches_and_stores(cache, stub_client, store, clock):
    snap = cache.get(" aapl ")

    assert snap is not None
    assert snap.symbol == "AAPL"
    assert snap.trading_date == TODAY
    assert snap.fetched_at == clock.now
    assert stub_client.calls == [("AAPL", TODAY)]
    assert store.get("intraday:snap:AAPL:2024-01-10") == snap


def test_fresh_entry_served_without_upstream(cache, stub_client, clock):
    first = cache.get("AAPL")
    clock.advance(59)
    second = cache.get("AAPL")

    assert second == first
    assert stub_client.call_count == 1


def test_stale_entry_is_refetched(cache, stub_client, clock, store):
    first = cache.get("AAPL")
    clock.advance(60)
    second = cache.get("AAPL")

    assert stub_client.call_count == 2
    assert second.fetched_at == first.fetched_at + datetime.timedelta(seconds=60)
    assert store.get(cache.key_for("AAPL")) == second


def test_force_bypasses_freshness(cache, stub_client):
    cache.get("AAPL")
    forced = cache.get("AAPL", force=True)

    assert forced is not None
    assert stub_client.call_count == 2


def test_failure_serves_stale_entry(cache, stub_client, clock, store):
    first = cache.get("AAPL")
    clock.advance(120)
    stub_client.responses["AAPL"] = DataSourceUnavailable("503")

    served = cache.get("AAPL")

    assert served == first
    assert store.get(cache.key_for("AAPL")) == first
    assert cache.state("AAPL") == CacheEntryState.STALE


def test_forced_failure_keeps_entry(cache, stub_client, store):
    first = cache.get("AAPL")
    stub_client.responses["AAPL"] = RateLimited("429", retry_after=1.0)

    assert cache.get("AAPL", force=True) == first
    assert store.get(cache.key_for("AAPL")) == first


def test_failure_without_entry_is_miss(cache, stub_client, store):
    assert cache.get("ZZZZ") is None
    assert len(store) == 0
    assert stub_client.call_count == 1


def test_unexpected_client_exception_is_miss(cache, stub_client):
    stub_client.responses["AAPL"] = RuntimeError("socket exploded")
    assert cache.get("AAPL") is None


def test_empty_bar_list_is_miss(cache, stub_client, store):
    stub_client.responses["AAPL"] = []
    assert cache.get("AAPL") is None
    assert len(store) == 0


def test_fetch_timeout_is_failure(clock):
    gate = threading.Event()
    client = StubClient({"AAPL": make_bars()}, gate=gate)
    try:
        with _cache(client, clock, fetch_timeout=0.05) as cache:
            started = time.monotonic()
            assert cache.get("AAPL") is None
            assert time.monotonic() - started < 2
            assert cache.state("AAPL") == CacheEntryState.MISSING
    finally:
        gate.set()


def test_concurrent_gets_share_one_fetch(clock, store):
    gate = threading.Event()
    client = StubClient({"AAPL": make_bars()}, gate=gate)
    results = []
    lock = threading.Lock()

    with _cache(client, clock, store) as cache:

        def reader():
            snap = cache.get("AAPL")
            with lock:
                results.append(snap)

        threads = [threading.Thread(target=reader) for _ in range(8)]
        threads[0].start()
        assert client.started.wait(timeout=5)
        for t in threads[1:]:
            t.start()
        _wait_for_waiters(cache, cache.key_for("AAPL"), 7)
        assert cache.state("AAPL") == CacheEntryState.FETCHING
        gate.set()
        for t in threads:
            t.join(timeout=5)

    assert client.call_count == 1
    assert len(results) == 8
    assert all(r is results[0] for r in results)


def test_forced_get_waits_then_fetches_again(clock):
    gate = threading.Event()
    client = StubClient({"AAPL": make_bars()}, gate=gate)
    results = {}

    with _cache(client, clock) as cache:
        plain = threading.Thread(target=lambda: results.update(plain=cache.get("AAPL")))
        plain.start()
        assert client.started.wait(timeout=5)
        forced = threading.Thread(
            target=lambda: results.update(forced=cache.get("AAPL", force=True))
        )
        forced.start()
        time.sleep(0.05)
        # The forced caller is parked behind the in-flight fetch.
        assert client.call_count == 1
        assert forced.is_alive()
        gate.set()
        plain.join(timeout=5)
        forced.join(timeout=5)

    assert client.call_count == 2
    assert results["plain"] is not None
    assert results["forced"] is not None
    assert results["forced"] is not results["plain"]


def test_distinct_symbols_fetch_in_parallel(clock):
    gate = threading.Event()
    client = StubClient({"AAPL": make_bars(), "MSFT": make_bars(price=300.0)}, gate=gate)

    with _cache(client, clock) as cache:
        threads = [threading.Thread(target=cache.get, args=(s,)) for s in ("AAPL", "MSFT")]
        for t in threads:
            t.start()
        deadline = time.monotonic() + 5
        while client.call_count < 2 and time.monotonic() < deadline:
            time.sleep(0.005)
        # Both fetches are in flight at once while the gate is still closed.
        assert client.call_count == 2
        gate.set()
        for t in threads:
            t.join(timeout=5)


def test_weekend_fallback_serves_recent_snapshot(cache, stub_client, store, clock):
    friday = datetime.date(2024, 1, 5)
    friday_snap = IntradaySnapshot(
        symbol="TSLA",
        trading_date=friday,
        bars=tuple(make_bars(price=200.0)),
        fetched_at=clock.now - datetime.timedelta(days=5),
    )
    store.put(cache.key_for("TSLA", friday), friday_snap)

    served = cache.get("TSLA")

    assert served == friday_snap
    assert store.get(cache.key_for("TSLA")) is None


def test_fallback_only_on_not_found(cache, stub_client, store, clock):
    yesterday = TODAY - datetime.timedelta(days=1)
    store.put(
        cache.key_for("TSLA", yesterday),
        IntradaySnapshot(
            symbol="TSLA", trading_date=yesterday, bars=tuple(make_bars()), fetched_at=clock.now
        ),
    )
    stub_client.responses["TSLA"] = DataSourceUnavailable("timeout")

    assert cache.get("TSLA") is None


def test_fallback_respects_lookback(stub_client, clock, store):
    old = TODAY - datetime.timedelta(days=6)
    with _cache(stub_client, clock, store, fallback_lookback_days=5) as cache:
        store.put(
            cache.key_for("TSLA", old),
            IntradaySnapshot(
                symbol="TSLA", trading_date=old, bars=tuple(make_bars()), fetched_at=clock.now
            ),
        )
        assert cache.get("TSLA") is None


def test_store_failures_are_absorbed(stub_client, clock):
    with _cache(stub_client, clock, BrokenStore()) as cache:
        snap = cache.get("AAPL")
        assert snap is not None
        assert snap.symbol == "AAPL"
        assert cache.state("AAPL") == CacheEntryState.MISSING


def test_state_transitions(cache, clock):
    assert cache.state("AAPL") == CacheEntryState.MISSING
    cache.get("AAPL")
    assert cache.state("AAPL") == CacheEntryState.FRESH
    clock.advance(61)
    assert cache.state("AAPL") == CacheEntryState.STALE


def test_warm_many_dedupes_and_counts(cache, stub_client):
    tickers = [
        "AAPL",
        TickerRef(2, "msft"),
        {"ticker": "AAPL"},
        {"symbol": "ZZZZ"},
        "",
    ]

    warmed = cache.warm_many(tickers)

    assert warmed == 2
    assert sorted(s for s, _ in stub_client.calls) == ["AAPL", "MSFT", "ZZZZ"]


def test_warm_many_uses_fresh_entries(cache, stub_client):
    cache.get("AAPL")
    assert cache.warm_many(["AAPL", "MSFT"]) == 2
    assert stub_client.call_count == 2

    assert cache.warm_many(["AAPL", "MSFT"], force=True) == 2
    assert stub_client.call_count == 4


def test_warm_many_counts_stale_served(cache, stub_client, clock):
    cache.get("AAPL")
    clock.advance(300)
    stub_client.responses["AAPL"] = DataSourceUnavailable("down")

    assert cache.warm_many(["AAPL", "MSFT"]) == 2


def test_warm_many_empty(cache, stub_client):
    assert cache.warm_many([]) == 0
    assert stub_client.call_count == 0


def test_warm_many_rejects_unknown_reference(cache):
    with pytest.raises(TypeError):
        cache.warm_many([42])


def test_snapshot_bars_match_upstream(cache):
    snap = cache.get("MSFT")
    assert snap.last_price == make_bars(price=300.0)[-1].close
    assert snap.as_of == MARKET_NOW - datetime.timedelta(minutes=1)


def test_unordered_bars_are_miss(cache, stub_client, store):
    stub_client.responses["AAPL"] = list(reversed(make_bars()))

    assert cache.get("AAPL") is None
    assert len(store) == 0


def test_unordered_bars_serve_stale_entry(cache, stub_client, clock):
    first = cache.get("AAPL")
    clock.advance(120)
    stub_client.responses["AAPL"] = list(reversed(make_bars()))

    assert cache.get("AAPL") == first


def test_get_after_close(stub_client, clock, store):
    cache = _cache(stub_client, clock, store)
    cached = cache.get("AAPL")
    cache.close()

    assert cache.get("AAPL") == cached
    assert cache.get("AAPL", force=True) == cached
    assert cache.get("MSFT") is None
    assert stub_client.call_count == 1


def test_prev_close_from_previous_snapshot(cache, stub_client, store, clock):
    yesterday = TODAY - datetime.timedelta(days=1)
    store.put(
        cache.key_for("AAPL", yesterday),
        IntradaySnapshot(
            symbol="AAPL",
            trading_date=yesterday,
            bars=tuple(make_bars(price=90.0)),
            fetched_at=clock.now - datetime.timedelta(days=1),
        ),
    )

    snap = cache.get("AAPL")

    # yesterday closed at 92.5, today's last bar at 102.5
    assert snap.prev_close == 92.5
    assert snap.change_abs == pytest.approx(10.0)
    assert snap.change_pct == pytest.approx(10.0 / 92.5 * 100)


def test_prev_close_unknown_without_history(cache):
    snap = cache.get("AAPL")
    assert snap.prev_close is None
    assert snap.change_abs is None
    assert snap.change_pct is None
