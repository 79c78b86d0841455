from __future__ import annotations

import pytest

from agent_coordination.core.config import get_settings
from agent_coordination.core.metrics import reset_metrics_for_tests
from agent_coordination.orchestrator.locks import LockManager
from agent_coordination.storage.kv import InMemoryKeyValueStore


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _reset_process_state():
    get_settings.cache_clear()
    reset_metrics_for_tests()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def lock_manager(store, clock) -> LockManager:
    return LockManager(store, clock=clock)
