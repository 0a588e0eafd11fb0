"""Overlap-prevention lock manager.

Manifesto:
    A task flagged ``without_overlapping`` must never run twice at once.
    The lock manager provides an atomic check-and-set with TTL-based expiry
    so a crashed holder cannot cause a permanent deadlock.  Expiry only
    prevents *future* acquisitions; it never terminates a running action.

Tags:
    cadence, scheduling, locks, TTL, concurrency, overlap-prevention

    Lock Manager Architecture::

        LockManager.try_acquire(name, max_runtime)
            │
            ▼
        LockStore.set_if_absent_or_expired(name, now + max_runtime, now)
            ├── MemoryLockStore   dict + threading.Lock   (one process)
            └── SQLiteLockStore   single UPSERT statement (many processes)

        Record present and not expired  → False (skip this run)
        Record absent, or now >= expiry → True  (record written)

        release(name) deletes unconditionally.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol, runtime_checkable
from uuid import uuid4

from cadence.core.errors import LockStoreUnavailable
from cadence.core.logging import get_logger
from cadence.core.timestamps import utc_now

logger = get_logger(__name__)

DEFAULT_MAX_RUNTIME = timedelta(hours=24)


@runtime_checkable
class LockStore(Protocol):
    """Shared key-value store holding lock expiries.

    ``set_if_absent_or_expired`` must be a single atomic check-and-set,
    visible to every scheduler instance sharing the store.
    """

    def get(self, key: str) -> datetime | None: ...

    def set_if_absent_or_expired(self, key: str, expires_at: datetime, now: datetime) -> bool: ...

    def delete(self, key: str) -> None: ...

    def list_active(self, now: datetime) -> dict[str, datetime]: ...

    def purge_expired(self, now: datetime) -> int: ...


class MemoryLockStore:
    """In-process lock store for single-process deployments."""

    def __init__(self) -> None:
        self._locks: dict[str, datetime] = {}
        self._mutex = threading.Lock()

    def get(self, key: str) -> datetime | None:
        with self._mutex:
            return self._locks.get(key)

    def set_if_absent_or_expired(self, key: str, expires_at: datetime, now: datetime) -> bool:
        with self._mutex:
            current = self._locks.get(key)
            if current is not None and now < current:
                return False
            self._locks[key] = expires_at
            return True

    def delete(self, key: str) -> None:
        with self._mutex:
            self._locks.pop(key, None)

    def list_active(self, now: datetime) -> dict[str, datetime]:
        with self._mutex:
            return {k: v for k, v in self._locks.items() if now < v}

    def purge_expired(self, now: datetime) -> int:
        with self._mutex:
            expired = [k for k, v in self._locks.items() if v <= now]
            for key in expired:
                del self._locks[key]
            return len(expired)


class SQLiteLockStore:
    """SQLite-backed lock store shared by every process using the same file.

    Acquisition is one ``INSERT ... ON CONFLICT DO UPDATE ... WHERE`` statement,
    so two schedulers racing for the same key cannot both succeed.  Any
    ``sqlite3.Error`` is raised as :class:`LockStoreUnavailable`.
    """

    _SCHEMA = """
        CREATE TABLE IF NOT EXISTS cadence_locks (
            key TEXT PRIMARY KEY,
            expires_at REAL NOT NULL,
            locked_by TEXT NOT NULL,
            locked_at REAL NOT NULL
        )
    """

    def __init__(
        self,
        database: str | Path = ":memory:",
        *,
        instance_id: str | None = None,
        timeout: float = 5.0,
    ) -> None:
        self.database = str(database)
        self.instance_id = instance_id or str(uuid4())
        self._mutex = threading.Lock()
        try:
            if self.database != ":memory:":
                Path(self.database).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                self.database,
                timeout=timeout,
                isolation_level=None,
                check_same_thread=False,
            )
            self._conn.execute(self._SCHEMA)
        except (sqlite3.Error, OSError) as e:
            raise LockStoreUnavailable(f"Cannot open lock store {self.database}: {e}", cause=e) from e

    @staticmethod
    def _ts(dt: datetime) -> float:
        return dt.timestamp()

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            with self._mutex:
                return self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise LockStoreUnavailable(f"Lock store error: {e}", cause=e) from e

    def get(self, key: str) -> datetime | None:
        row = self._execute("SELECT expires_at FROM cadence_locks WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return datetime.fromtimestamp(row[0], UTC)

    def set_if_absent_or_expired(self, key: str, expires_at: datetime, now: datetime) -> bool:
        cursor = self._execute(
            """
            INSERT INTO cadence_locks (key, expires_at, locked_by, locked_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                expires_at = excluded.expires_at,
                locked_by = excluded.locked_by,
                locked_at = excluded.locked_at
            WHERE cadence_locks.expires_at <= ?
            """,
            (key, self._ts(expires_at), self.instance_id, self._ts(now), self._ts(now)),
        )
        return cursor.rowcount > 0

    def delete(self, key: str) -> None:
        self._execute("DELETE FROM cadence_locks WHERE key = ?", (key,))

    def get_holder(self, key: str) -> str | None:
        row = self._execute("SELECT locked_by FROM cadence_locks WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def list_active(self, now: datetime) -> dict[str, datetime]:
        rows = self._execute(
            "SELECT key, expires_at FROM cadence_locks WHERE expires_at > ? ORDER BY locked_at",
            (self._ts(now),),
        ).fetchall()
        return {key: datetime.fromtimestamp(expires, UTC) for key, expires in rows}

    def purge_expired(self, now: datetime) -> int:
        cursor = self._execute("DELETE FROM cadence_locks WHERE expires_at <= ?", (self._ts(now),))
        return cursor.rowcount

    def close(self) -> None:
        with self._mutex:
            self._conn.close()


class LockManager:
    """Overlap-prevention locks for scheduled tasks.

    Example:
        >>> manager = LockManager(MemoryLockStore())
        >>> if manager.try_acquire("reports:generate"):
        ...     try:
        ...         pass  # run the task
        ...     finally:
        ...         manager.release("reports:generate")
    """

    def __init__(
        self,
        store: LockStore,
        *,
        clock: Callable[[], datetime] = utc_now,
        default_max_runtime: timedelta = DEFAULT_MAX_RUNTIME,
    ) -> None:
        self.store = store
        self.clock = clock
        self.default_max_runtime = default_max_runtime

    def try_acquire(self, task_name: str, max_runtime: timedelta | None = None) -> bool:
        """Atomically claim the lock for ``task_name``.

        Returns:
            True if acquired, False if a non-expired lock exists

        Raises:
            LockStoreUnavailable: If the store cannot be reached
        """
        now = self.clock()
        expires_at = now + (max_runtime or self.default_max_runtime)
        acquired = self.store.set_if_absent_or_expired(task_name, expires_at, now)
        if acquired:
            logger.debug("lock_acquired", task=task_name, expires_at=expires_at.isoformat())
        else:
            logger.debug("lock_held", task=task_name, holder=self.holder(task_name))
        return acquired

    def release(self, task_name: str) -> None:
        """Delete the lock for ``task_name`` regardless of holder."""
        self.store.delete(task_name)
        logger.debug("lock_released", task=task_name)

    @contextmanager
    def hold(self, task_name: str, max_runtime: timedelta | None = None) -> Iterator[bool]:
        """Acquire for the duration of a ``with`` block.

        Yields whether the lock was acquired; when it was, it is released on
        every exit path.
        """
        acquired = self.try_acquire(task_name, max_runtime)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(task_name)

    def holder(self, task_name: str) -> str | None:
        """Instance id of the current holder, when the store tracks one."""
        get_holder = getattr(self.store, "get_holder", None)
        return get_holder(task_name) if get_holder is not None else None

    def is_locked(self, task_name: str) -> bool:
        expires_at = self.store.get(task_name)
        return expires_at is not None and self.clock() < expires_at

    def list_active_locks(self) -> dict[str, datetime]:
        return self.store.list_active(self.clock())

    def cleanup_expired_locks(self) -> int:
        """Remove expired records left behind by crashed holders."""
        count = self.store.purge_expired(self.clock())
        if count > 0:
            logger.info("expired_locks_cleaned", count=count)
        return count
