from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from contextlib import AbstractContextManager, nullcontext
from typing import Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def threading_timer(delay_s: float, fn: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay_s, fn)
    timer.daemon = True
    return timer


class _Entry:
    __slots__ = ("handle",)

    def __init__(self) -> None:
        self.handle: TimerHandle | None = None


class KeyedTimers:
    """At most one pending timer per key.

    ``start(key, ...)`` cancels and forgets any pending timer for ``key``
    before arming the new one. Callbacks run under ``run_lock`` (the store
    lock in practice), and a timer that was superseded while waiting for the
    lock does nothing.
    """

    def __init__(
        self,
        *,
        timer_factory: TimerFactory | None = None,
        run_lock: AbstractContextManager | None = None,
        name: str = "timers",
    ) -> None:
        self._factory: TimerFactory = timer_factory or threading_timer
        self._run_lock: AbstractContextManager = run_lock or nullcontext()
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._timers: dict[str, _Entry] = {}
        self._running = 0
        self.name = name

    def start(self, key: str, delay_ms: int | float, callback: Callable[[], None]) -> None:
        entry = _Entry()
        handle = self._factory(max(0.0, delay_ms / 1000.0), lambda: self._fire(key, entry, callback))
        entry.handle = handle
        with self._lock:
            existing = self._timers.pop(key, None)
            if existing is not None and existing.handle is not None:
                existing.handle.cancel()
            self._timers[key] = entry
        handle.start()

    def _fire(self, key: str, entry: _Entry, callback: Callable[[], None]) -> None:
        with self._run_lock:
            with self._lock:
                if self._timers.get(key) is not entry:
                    return
                del self._timers[key]
                self._running += 1
            try:
                callback()
            except Exception:
                logger.exception("%s: callback for %s failed", self.name, key)
            finally:
                with self._lock:
                    self._running -= 1
                    self._idle.notify_all()

    def cancel(self, key: str) -> bool:
        with self._lock:
            entry = self._timers.pop(key, None)
            if entry is None:
                return False
            if entry.handle is not None:
                entry.handle.cancel()
            self._idle.notify_all()
            return True

    def pending(self, key: str) -> bool:
        with self._lock:
            return key in self._timers

    def idle(self) -> bool:
        with self._lock:
            return not self._timers and not self._running

    def cancel_all(self) -> int:
        with self._lock:
            entries = list(self._timers.values())
            self._timers.clear()
            self._idle.notify_all()
        for entry in entries:
            if entry.handle is not None:
                entry.handle.cancel()
        return len(entries)

    def wait(self, timeout_s: float | None = None) -> bool:
        """Block until no timer is pending or running. Returns False on timeout."""
        deadline = None if timeout_s is None else time.monotonic() + timeout_s
        with self._idle:
            while self._timers or self._running:
                if deadline is None:
                    self._idle.wait(0.05)
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._idle.wait(min(remaining, 0.05))
        return True
