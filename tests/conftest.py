from __future__ import annotations

import threading

import pytest

from updateflow.cache import CacheLayer


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: float = 1_000.0):
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self.now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.now += seconds


class Counter:
    """Thread-safe call counter usable as step work."""

    def __init__(self, value=None, fail: bool = False):
        self.calls = 0
        self.value = value
        self.fail = fail
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.calls += 1
            n = self.calls
        if self.fail:
            raise RuntimeError(f"boom #{n}")
        return self.value if self.value is not None else n


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return CacheLayer(clock=clock)
