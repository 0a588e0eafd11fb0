"""Tests for LockManager and the lock stores."""

import sqlite3
import threading
from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest

from cadence.core.errors import LockStoreUnavailable
from cadence.scheduling import LockManager, MemoryLockStore, SQLiteLockStore


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    if request.param == "memory":
        yield MemoryLockStore()
        return
    store = SQLiteLockStore(tmp_path / "locks.db")
    yield store
    store.close()


class TestLockManager:
    """Acquire, release and inspect locks."""

    def test_acquire_then_held(self, any_store, clock):
        manager = LockManager(any_store, clock=clock)
        assert manager.try_acquire("task") is True
        assert manager.try_acquire("task") is False
        assert manager.is_locked("task") is True

    def test_memory_store_has_no_holder(self, clock):
        manager = LockManager(MemoryLockStore(), clock=clock)
        manager.try_acquire("task")
        assert manager.holder("task") is None

    def test_release_allows_reacquire(self, any_store, clock):
        manager = LockManager(any_store, clock=clock)
        manager.try_acquire("task")
        manager.release("task")
        assert manager.is_locked("task") is False
        assert manager.try_acquire("task") is True

    def test_release_unheld_is_noop(self, any_store, clock):
        LockManager(any_store, clock=clock).release("never-held")

    def test_locks_are_per_task(self, any_store, clock):
        manager = LockManager(any_store, clock=clock)
        assert manager.try_acquire("a")
        assert manager.try_acquire("b")

    def test_hold_releases_on_exception(self, any_store, clock):
        manager = LockManager(any_store, clock=clock)
        with pytest.raises(RuntimeError):
            with manager.hold("task") as acquired:
                assert acquired
                raise RuntimeError("boom")
        assert manager.is_locked("task") is False

    def test_hold_does_not_release_foreign_lock(self, any_store, clock):
        manager = LockManager(any_store, clock=clock)
        manager.try_acquire("task")
        with manager.hold("task") as acquired:
            assert acquired is False
        assert manager.is_locked("task") is True


class TestLockExpiry:
    """TTL expiry is the only timeout: false before, true at or after."""

    def test_expiry_boundary(self, any_store, clock):
        manager = LockManager(any_store, clock=clock)
        assert manager.try_acquire("task", timedelta(minutes=10))

        clock.advance(minutes=9, seconds=59)
        assert manager.try_acquire("task") is False

        clock.advance(seconds=1)
        assert manager.is_locked("task") is False
        assert manager.try_acquire("task") is True

    def test_default_max_runtime_is_24_hours(self, any_store, clock):
        manager = LockManager(any_store, clock=clock)
        manager.try_acquire("task")
        clock.advance(hours=23, minutes=59)
        assert manager.try_acquire("task") is False
        clock.advance(minutes=1)
        assert manager.try_acquire("task") is True

    def test_list_and_cleanup(self, any_store, clock):
        manager = LockManager(any_store, clock=clock)
        manager.try_acquire("short", timedelta(minutes=1))
        manager.try_acquire("long", timedelta(hours=1))

        assert set(manager.list_active_locks()) == {"short", "long"}
        clock.advance(minutes=5)
        assert set(manager.list_active_locks()) == {"long"}
        assert manager.cleanup_expired_locks() == 1
        assert any_store.get("short") is None


class TestConcurrentAcquire:
    """Exactly one of many racing acquirers wins."""

    @pytest.mark.slow
    def test_one_winner(self, any_store, clock):
        manager = LockManager(any_store, clock=clock)
        barrier = threading.Barrier(8)
        results: list[bool] = []
        results_lock = threading.Lock()

        def contend():
            barrier.wait()
            acquired = manager.try_acquire("task")
            with results_lock:
                results.append(acquired)

        threads = [threading.Thread(target=contend) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert results.count(False) == 7


@pytest.mark.integration
class TestSQLiteLockStore:
    """SQLite-specific behaviour."""

    def test_shared_between_instances(self, tmp_path, clock):
        path = tmp_path / "shared.db"
        first = SQLiteLockStore(path, instance_id="scheduler-1")
        second = SQLiteLockStore(path, instance_id="scheduler-2")
        try:
            assert LockManager(first, clock=clock).try_acquire("task") is True
            assert LockManager(second, clock=clock).try_acquire("task") is False
            assert second.get_holder("task") == "scheduler-1"
        finally:
            first.close()
            second.close()

    def test_held_lock_logs_holder(self, tmp_path, clock):
        path = tmp_path / "shared.db"
        first = SQLiteLockStore(path, instance_id="scheduler-1")
        second = SQLiteLockStore(path, instance_id="scheduler-2")
        try:
            LockManager(first, clock=clock).try_acquire("task")
            manager = LockManager(second, clock=clock)
            with patch("cadence.scheduling.lock_manager.logger") as log:
                assert manager.try_acquire("task") is False
            log.debug.assert_called_once_with("lock_held", task="task", holder="scheduler-1")
            assert manager.holder("task") == "scheduler-1"
        finally:
            first.close()
            second.close()

    def test_expiry_round_trips_as_aware_utc(self, sqlite_store):
        expires = datetime(2024, 1, 15, 9, 10, tzinfo=UTC)
        sqlite_store.set_if_absent_or_expired("task", expires, datetime(2024, 1, 15, 9, 0, tzinfo=UTC))
        assert sqlite_store.get("task") == expires

    def test_errors_become_lock_store_unavailable(self, sqlite_store, clock):
        sqlite_store.close()
        with pytest.raises(LockStoreUnavailable) as exc_info:
            LockManager(sqlite_store, clock=clock).try_acquire("task")
        assert exc_info.value.retryable is True
        assert isinstance(exc_info.value.cause, sqlite3.Error)

    def test_unopenable_database(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        with pytest.raises(LockStoreUnavailable):
            SQLiteLockStore(blocker / "locks.db")
