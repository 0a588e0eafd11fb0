"""
Shared pytest fixtures and configuration for cadence tests.

This module provides:
- A controllable clock for deterministic due-time and lock-expiry tests
- A recording event recorder
- Registries, lock managers and dispatchers wired to those fakes

Usage:
    def test_something(registry, dispatcher, recorder, clock):
        registry.call(job, name="job").every_minute().register()
        ...
"""

from __future__ import annotations

import os
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from cadence.core.settings import clear_settings_cache
from cadence.scheduling import (
    CommandRegistry,
    ExecutionDispatcher,
    LockManager,
    MemoryLockStore,
    OutputRouter,
    RunEvent,
    RunPhase,
    SQLiteLockStore,
    StaticMaintenanceMode,
    TaskRegistry,
)

# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests without an explicit marker as unit tests."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Fakes
# =============================================================================


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


class RecordingRecorder:
    """EventRecorder that keeps every event in memory."""

    def __init__(self) -> None:
        self.events: list[RunEvent] = []
        self._lock = threading.Lock()

    def record(self, event: RunEvent) -> None:
        with self._lock:
            self.events.append(event)

    def phases(self, task_name: str | None = None) -> list[RunPhase]:
        with self._lock:
            return [e.phase for e in self.events if task_name is None or e.task_name == task_name]

    def of_phase(self, phase: RunPhase) -> list[RunEvent]:
        with self._lock:
            return [e for e in self.events if e.phase is phase]


class CountingLockStore(MemoryLockStore):
    """Memory store that counts every call, for "no lock operations" checks."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[str] = []

    def get(self, key):
        self.calls.append("get")
        return super().get(key)

    def set_if_absent_or_expired(self, key, expires_at, now):
        self.calls.append("set_if_absent_or_expired")
        return super().set_if_absent_or_expired(key, expires_at, now)

    def delete(self, key):
        self.calls.append("delete")
        return super().delete(key)

    def list_active(self, now):
        self.calls.append("list_active")
        return super().list_active(now)

    def purge_expired(self, now):
        self.calls.append("purge_expired")
        return super().purge_expired(now)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch, tmp_path):
    """Keep CADENCE_* variables and .env files of the host out of tests."""
    for key in list(os.environ):
        if key.startswith("CADENCE_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def clock() -> FixedClock:
    """Clock fixed at Monday 2024-01-15 09:00 UTC."""
    return FixedClock(datetime(2024, 1, 15, 9, 0, tzinfo=UTC))


@pytest.fixture
def recorder() -> RecordingRecorder:
    return RecordingRecorder()


@pytest.fixture
def maintenance() -> StaticMaintenanceMode:
    return StaticMaintenanceMode(False)


@pytest.fixture
def registry(maintenance) -> TaskRegistry:
    return TaskRegistry("UTC", maintenance)


@pytest.fixture
def commands() -> CommandRegistry:
    return CommandRegistry()


@pytest.fixture
def lock_store() -> CountingLockStore:
    return CountingLockStore()


@pytest.fixture
def sqlite_store(tmp_path: Path):
    store = SQLiteLockStore(tmp_path / "locks.db")
    yield store
    store.close()


@pytest.fixture
def lock_manager(lock_store, clock) -> LockManager:
    return LockManager(lock_store, clock=clock)


@pytest.fixture
def dispatcher(lock_manager, recorder, commands, clock):
    dispatcher = ExecutionDispatcher(lock_manager, recorder, OutputRouter(), commands, max_workers=4, clock=clock)
    yield dispatcher
    dispatcher.shutdown(wait=True)
