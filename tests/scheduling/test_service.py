"""Tests for SchedulerService."""

import threading
import time
from datetime import UTC, datetime

import pytest

from cadence.core.errors import InvalidFrequencyExpression
from cadence.scheduling import RunPhase, RunState, SchedulerService


def at(hour: int, minute: int, second: int = 0) -> datetime:
    return datetime(2024, 1, 15, hour, minute, second, tzinfo=UTC)


class TestRunDue:
    """One evaluation tick."""

    def test_every_five_minutes_dispatches_on_multiples(self, service, registry, recorder):
        registry.call(lambda: None, name="five").every_five_minutes().register()

        for minute in (0, 3, 5, 10):
            service.run_due(at(9, minute))

        started = recorder.of_phase(RunPhase.STARTED)
        assert [e.at for e in started] == [service.clock()] * 3
        assert service.get_stats().tasks_dispatched == 3

    def test_dispatches_in_registration_order(self, service, registry):
        for name in ("b", "a", "c"):
            registry.call(lambda: None, name=name).every_minute().register()
        outcomes = service.run_due(at(9, 0))
        assert [o.task_name for o in outcomes] == ["b", "a", "c"]

    def test_empty_tick_has_no_side_effects(self, service, registry, recorder, lock_store):
        registry.call(lambda: None, name="daily").daily_at("8:00").without_overlapping().register()

        assert service.run_due(at(9, 1)) == []
        assert service.run_due(at(9, 1)) == []

        assert recorder.events == []
        assert lock_store.calls == []

    def test_held_lock_skips_daily_task(self, service, registry, recorder, lock_manager):
        ran = []
        registry.call(lambda: ran.append(1), name="report").daily_at("8:00").without_overlapping().register()
        lock_manager.try_acquire("report")

        outcomes = service.run_due(at(8, 0))

        assert outcomes[0].state is RunState.SKIPPED
        assert ran == []
        skipped = recorder.of_phase(RunPhase.SKIPPED)
        assert [e.task_name for e in skipped] == ["report"]
        assert service.get_stats().tasks_skipped == 1

    def test_failure_isolation(self, service, registry):
        ran = []
        registry.call(lambda: ran.append("first"), name="first").every_minute().register()
        registry.call(lambda: 1 / 0, name="broken").every_minute().register()
        registry.call(lambda: ran.append("last"), name="last").every_minute().register()

        outcomes = service.run_due(at(9, 0))

        assert [o.state for o in outcomes] == [RunState.SUCCEEDED, RunState.FAILED, RunState.SUCCEEDED]
        assert ran == ["first", "last"]
        assert service.get_stats().tasks_failed == 1

    def test_unexpected_dispatch_error_is_isolated(self, service, registry, dispatcher, monkeypatch):
        registry.call(lambda: None, name="a").every_minute().register()
        registry.call(lambda: None, name="b").every_minute().register()
        original = dispatcher.dispatch

        def flaky(definition):
            if definition.name == "a":
                raise RuntimeError("recorder exploded")
            return original(definition)

        monkeypatch.setattr(dispatcher, "dispatch", flaky)
        outcomes = service.run_due(at(9, 0))

        assert [o.state for o in outcomes] == [RunState.FAILED, RunState.SUCCEEDED]
        assert "recorder exploded" in service.get_stats().last_error

    def test_uses_clock_by_default(self, service, registry, clock):
        registry.call(lambda: None, name="nine").daily_at("9:00").register()
        assert [o.task_name for o in service.run_due()] == ["nine"]
        clock.advance(minutes=1)
        assert service.run_due() == []

    def test_invalid_expression_rejected_at_registration(self, service, registry):
        with pytest.raises(InvalidFrequencyExpression):
            registry.call(lambda: None, name="bad").cron("99 * * * *").register()
        assert service.run_due(at(9, 0)) == []


class TestBackgroundTasks:
    @pytest.mark.slow
    @pytest.mark.timeout(15)
    def test_long_background_task_does_not_block_next_tick(self, service, registry, recorder):
        finish = threading.Event()
        (
            registry.call(lambda: finish.wait(10), name="slow")
            .every_minute()
            .without_overlapping()
            .run_in_background()
            .register()
        )
        registry.call(lambda: None, name="quick").every_minute().register()

        first = service.run_due(at(9, 0))
        start = time.monotonic()
        second = service.run_due(at(9, 1))
        elapsed = time.monotonic() - start

        assert elapsed < 2
        assert first[0].state is RunState.RUNNING
        assert second[0].state is RunState.SKIPPED
        assert [o.state for o in (first[1], second[1])] == [RunState.SUCCEEDED, RunState.SUCCEEDED]

        finish.set()
        assert first[0].wait(5).succeeded

    def test_background_failure_counted(self, service, registry):
        registry.call(lambda: 1 / 0, name="bg").every_minute().run_in_background().register()
        outcome = service.run_due(at(9, 0))[0]
        outcome.future.exception(5)
        service.dispatcher.shutdown(wait=True)
        assert service.get_stats().tasks_failed == 1


class TestTrigger:
    def test_trigger_ignores_frequency(self, service, registry, recorder):
        registry.call(lambda: "ok", name="monthly").monthly().register()
        outcome = service.trigger("monthly")
        assert outcome.state is RunState.SUCCEEDED
        assert outcome.result.stdout == "ok"

    def test_trigger_unknown(self, service):
        with pytest.raises(KeyError):
            service.trigger("missing")


class TestLifecycle:
    def test_start_tick_stop(self, service, registry, backend, clock):
        registry.call(lambda: None, name="job").every_minute().register()

        service.start()
        assert service.is_running
        backend.tick()
        service.stop()

        assert not service.is_running
        assert service.get_stats().tick_count == 1
        assert service.get_stats().tasks_dispatched == 1

    def test_health(self, service, registry, lock_manager):
        registry.call(lambda: None, name="job").every_minute().register()
        lock_manager.try_acquire("other")
        service.start()

        health = service.health()

        assert health["healthy"] is True
        assert health["tasks_registered"] == 1
        assert health["active_locks"] == 1
        assert health["backend"]["backend"] == "manual"
        service.stop()

    def test_stats_serialise_last_tick(self, service, registry):
        assert service.get_stats().to_dict()["last_tick"] is None
        service.run_due(at(9, 0))
        assert service.get_stats().to_dict()["last_tick"] == "2024-01-15T09:00:00+00:00"

    def test_reset_stats(self, service, registry):
        registry.call(lambda: None, name="job").every_minute().register()
        service.run_due(at(9, 0))
        service.reset_stats()
        assert service.get_stats().tick_count == 0

    def test_default_backend_is_thread(self, registry, dispatcher):
        assert SchedulerService(registry, dispatcher).backend.name == "thread"
