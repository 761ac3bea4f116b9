"""Shared test fixtures."""

from __future__ import annotations

import pytest

from geoshield.adapters.outbound.store import MemoryDurableStore
from geoshield.shared.cache import CacheStore
from geoshield.shared.resilience import CallAnalytics, HealthTracker, UsageTracker

# 2023-11-14T22:13:20Z, a little under two hours before a UTC day boundary.
EPOCH = 1_700_000_000.0


class ManualClock:
    """Clock that only moves when a test says so."""

    def __init__(self, start: float = EPOCH) -> None:
        self._now = start

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def memory_store() -> MemoryDurableStore:
    return MemoryDurableStore()


@pytest.fixture
def cache(memory_store: MemoryDurableStore, clock: ManualClock) -> CacheStore:
    return CacheStore(memory_store, clock=clock)


@pytest.fixture
def health(clock: ManualClock) -> HealthTracker:
    return HealthTracker(clock=clock)


@pytest.fixture
def usage(clock: ManualClock) -> UsageTracker:
    return UsageTracker(clock=clock)


@pytest.fixture
def analytics(clock: ManualClock) -> CallAnalytics:
    return CallAnalytics(clock=clock)
