"""Tests for ThreadSchedulerBackend."""

import threading
from datetime import UTC, datetime

import pytest

from cadence.scheduling import SchedulerBackend, ThreadSchedulerBackend
from cadence.scheduling.thread_backend import seconds_until_next_minute


class TestAlignment:
    def test_seconds_until_next_minute(self):
        now = datetime(2024, 1, 15, 9, 0, 45, 500_000, tzinfo=UTC)
        assert seconds_until_next_minute(now) == pytest.approx(14.55)

    def test_on_boundary_waits_a_full_minute(self):
        now = datetime(2024, 1, 15, 9, 0, 0, tzinfo=UTC)
        assert seconds_until_next_minute(now) == pytest.approx(60.05)


@pytest.mark.slow
class TestThreadSchedulerBackend:
    """Start, tick and stop the daemon thread."""

    def test_satisfies_protocol(self):
        assert isinstance(ThreadSchedulerBackend(), SchedulerBackend)

    def test_ticks_until_stopped(self):
        backend = ThreadSchedulerBackend(align_to_minute=False)
        ticked = threading.Event()
        count = []

        def tick():
            count.append(1)
            if len(count) >= 2:
                ticked.set()

        backend.start(tick, interval_seconds=0.01)
        try:
            assert ticked.wait(5)
            assert backend.is_running
            assert backend.tick_count >= 2
            assert backend.last_tick is not None
        finally:
            backend.stop()
        assert not backend.is_running

    def test_tick_exception_does_not_stop_loop(self):
        backend = ThreadSchedulerBackend(align_to_minute=False)
        second = threading.Event()
        calls = []

        def tick():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            second.set()

        backend.start(tick, interval_seconds=0.01)
        try:
            assert second.wait(5)
        finally:
            backend.stop()

    def test_double_start_is_ignored(self):
        backend = ThreadSchedulerBackend(align_to_minute=False)
        backend.start(lambda: None, interval_seconds=10)
        first_thread = backend._thread
        backend.start(lambda: None, interval_seconds=10)
        assert backend._thread is first_thread
        backend.stop()

    def test_health(self):
        backend = ThreadSchedulerBackend(align_to_minute=False)
        assert backend.health()["healthy"] is False
        backend.start(lambda: None, interval_seconds=10)
        try:
            health = backend.health()
            assert health["healthy"] is True
            assert health["backend"] == "thread"
            assert health["interval_seconds"] == 10
        finally:
            backend.stop()
