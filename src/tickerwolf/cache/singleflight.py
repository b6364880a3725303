"""Per-key call coalescing: at most one in-flight call per key."""

from __future__ import annotations

import threading
from typing import Callable, Generic, Hashable, TypeVar

T = TypeVar("T")


class _Call(Generic[T]):
    def __init__(self) -> None:
        self.done = threading.Event()
        self.value: T | None = None
        self.error: BaseException | None = None
        self.waiters = 0


class SingleFlight(Generic[T]):
    """Coalesces concurrent calls that share a key.

    The first caller for a key (the leader) runs the function; callers that
    arrive while it runs block on that call and receive the same value or
    exception. ``_mu`` only guards the in-flight map and is never held while
    a function runs, so different keys proceed in parallel.
    """

    def __init__(self) -> None:
        self._mu = threading.Lock()
        self._calls: dict[Hashable, _Call[T]] = {}

    def do(self, key: Hashable, fn: Callable[[], T], join: bool = True) -> tuple[T, bool]:
        """Run ``fn`` once per in-flight key. Returns ``(value, shared)``.

        With ``join=False`` the caller never takes another call's result: it
        waits out any call already in flight and then leads its own.
        """
        while True:
            with self._mu:
                call = self._calls.get(key)
                if call is None:
                    call = _Call()
                    self._calls[key] = call
                    break
                if join:
                    call.waiters += 1

            call.done.wait()
            if join:
                if call.error is not None:
                    raise call.error
                return call.value, True  # type: ignore[return-value]

        try:
            call.value = fn()
        except BaseException as e:
            call.error = e
            raise
        finally:
            with self._mu:
                del self._calls[key]
            call.done.set()

        return call.value, call.waiters > 0

    def in_flight(self, key: Hashable) -> bool:
        with self._mu:
            return key in self._calls
