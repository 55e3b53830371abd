"""Shared fixtures for quotaguard tests."""

import pytest

from quotaguard.app.services.ratelimit import (
    FixedWindowRatelimit,
    InMemoryCounterStore,
    LimitConfig,
    reset_counter_store,
)


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float = 1_700_000_040.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset the global counter store before and after each test."""
    reset_counter_store()
    yield
    reset_counter_store()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryCounterStore(clock=clock)


@pytest.fixture
def make_gate(store, clock):
    """Factory for gates sharing the in-memory store and fake clock."""

    def _make(max_count: int = 10, window_seconds: float = 60, name: str = "request", **kwargs):
        kwargs.setdefault("failure_policy", "raise")
        gate_store = kwargs.pop("store", store)
        return FixedWindowRatelimit(
            LimitConfig(max_count=max_count, window_seconds=window_seconds),
            store=gate_store,
            name=name,
            clock=clock,
            **kwargs,
        )

    return _make
