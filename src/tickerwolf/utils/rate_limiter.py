"""Thread-safe rate limiter for API calls."""

from __future__ import annotations

import threading
import time
from typing import Callable

from tickerwolf.providers.base import RateLimit, RateLimited


class RateLimiter:
    """Spaces calls evenly across threads, blocking each caller until its slot.

    Slots are reserved under a short lock; the wait happens outside it so
    callers queue without serializing on the sleep.
    """

    def __init__(
        self,
        limit: RateLimit,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._interval = 60.0 / limit.calls_per_minute
        self._daily_limit = limit.calls_per_day
        self._daily_count = 0
        self._next_slot: float = 0.0
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()

    def wait(self) -> None:
        """Block until the next API call is allowed."""
        with self._lock:
            if self._daily_limit is not None and self._daily_count >= self._daily_limit:
                raise RateLimited(
                    f"Daily rate limit reached ({self._daily_limit} calls/day)"
                )
            now = self._clock()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self._interval
            self._daily_count += 1

        delay = slot - now
        if delay > 0:
            self._sleep(delay)

    def reset_daily(self) -> None:
        """Reset the daily call counter."""
        with self._lock:
            self._daily_count = 0
