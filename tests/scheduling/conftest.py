"""Pytest fixtures for scheduling tests."""

from __future__ import annotations

import pytest

from cadence.scheduling import SchedulerService


class ManualBackend:
    """Backend that ticks only when the test says so."""

    name = "manual"

    def __init__(self) -> None:
        self.callback = None
        self.started = False

    def start(self, tick_callback, interval_seconds=60.0):
        self.callback = tick_callback
        self.started = True

    def stop(self):
        self.started = False

    def health(self):
        return {"healthy": self.started, "backend": self.name, "tick_count": 0, "last_tick": None}

    def tick(self):
        self.callback()


@pytest.fixture
def backend() -> ManualBackend:
    return ManualBackend()


@pytest.fixture
def service(registry, dispatcher, backend, clock) -> SchedulerService:
    return SchedulerService(registry, dispatcher, backend, clock=clock)
