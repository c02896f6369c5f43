from __future__ import annotations

import random
from collections.abc import Callable
from pathlib import Path

import pytest

from chatly.config import CONFIG_ENV_OVERRIDES, ChatlyConfig
from chatly.session import ChatSession
from chatly.store import ChatStore

START_MS = 1_767_225_600_000  # 2026-01-01T00:00:00Z


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CHATLY_CONFIG", str(tmp_path / "config.json"))
    for env_var in CONFIG_ENV_OVERRIDES.values():
        monkeypatch.delenv(env_var, raising=False)


class FakeClock:
    def __init__(self, start: int = START_MS) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now


class FakeTimer:
    def __init__(self, owner: FakeTimers, delay_s: float, fn: Callable[[], None]) -> None:
        self.owner = owner
        self.delay_ms = round(delay_s * 1000)
        self.fn = fn
        self.due = 0
        self.seq = 0
        self.cancelled = False

    def start(self) -> None:
        self.owner._schedule(self)

    def cancel(self) -> None:
        self.cancelled = True


class FakeTimers:
    """Timer factory driven by a FakeClock instead of wall time."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.queue: list[FakeTimer] = []
        self._seq = 0

    def __call__(self, delay_s: float, fn: Callable[[], None]) -> FakeTimer:
        return FakeTimer(self, delay_s, fn)

    def _schedule(self, timer: FakeTimer) -> None:
        self._seq += 1
        timer.seq = self._seq
        timer.due = self.clock.now + timer.delay_ms
        self.queue.append(timer)

    def pending(self) -> int:
        return sum(1 for t in self.queue if not t.cancelled)

    def advance(self, ms: int) -> None:
        target = self.clock.now + ms
        while True:
            due = [t for t in self.queue if not t.cancelled and t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: (t.due, t.seq))
            self.queue.remove(timer)
            self.clock.now = max(self.clock.now, timer.due)
            timer.fn()
        self.queue = [t for t in self.queue if not t.cancelled]
        self.clock.now = target


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_timers(clock: FakeClock) -> FakeTimers:
    return FakeTimers(clock)


@pytest.fixture
def config() -> ChatlyConfig:
    return ChatlyConfig(kdf_iterations=1000)


@pytest.fixture
def store(tmp_path: Path):
    chat_store = ChatStore(tmp_path / "chat.sqlite")
    try:
        yield chat_store
    finally:
        chat_store.close()


@pytest.fixture
def session(store: ChatStore, config: ChatlyConfig, fake_timers: FakeTimers, clock: FakeClock):
    chat_session = ChatSession(
        store,
        config,
        timer_factory=fake_timers,
        clock=clock,
        rng=random.Random(7),
    )
    try:
        yield chat_session
    finally:
        chat_session.close()
