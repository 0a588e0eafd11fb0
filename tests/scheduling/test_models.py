"""Tests for run results, events and the run state machine."""

from datetime import UTC, datetime, timedelta

import pytest

from cadence.core.errors import InvalidRunTransition
from cadence.scheduling import ExecutionResult, ExitStatus, RunEvent, RunPhase, RunState
from cadence.scheduling.models import advance

T0 = datetime(2024, 1, 15, 9, 0, tzinfo=UTC)


class TestRunStateMachine:
    """PENDING -> SKIPPED | RUNNING -> SUCCEEDED | FAILED -> RELEASED."""

    @pytest.mark.parametrize(
        ("current", "new"),
        [
            (RunState.PENDING, RunState.SKIPPED),
            (RunState.PENDING, RunState.RUNNING),
            (RunState.RUNNING, RunState.SUCCEEDED),
            (RunState.RUNNING, RunState.FAILED),
            (RunState.SUCCEEDED, RunState.RELEASED),
            (RunState.FAILED, RunState.RELEASED),
        ],
    )
    def test_allowed(self, current, new):
        assert advance(current, new) is new

    @pytest.mark.parametrize(
        ("current", "new"),
        [
            (RunState.PENDING, RunState.SUCCEEDED),
            (RunState.SKIPPED, RunState.RUNNING),
            (RunState.RELEASED, RunState.RUNNING),
            (RunState.SUCCEEDED, RunState.FAILED),
            (RunState.RUNNING, RunState.PENDING),
        ],
    )
    def test_rejected(self, current, new):
        with pytest.raises(InvalidRunTransition) as exc_info:
            advance(current, new)
        assert exc_info.value.current == current.value
        assert exc_info.value.new == new.value


class TestExecutionResult:
    def test_succeeded_and_duration(self):
        result = ExecutionResult("job", T0, T0 + timedelta(seconds=2.5), ExitStatus.SUCCESS)
        assert result.succeeded
        assert result.duration_seconds == 2.5

    def test_to_dict(self):
        result = ExecutionResult(
            "job", T0, T0, ExitStatus.NON_ZERO, exit_code=3, stderr="boom", error="exited with code 3"
        )
        data = result.to_dict()
        assert not result.succeeded
        assert data["status"] == "non_zero"
        assert data["exit_code"] == 3
        assert data["error"] == "exited with code 3"
        assert data["started_at"] == T0.isoformat()


class TestRunEvent:
    def test_to_dict_omits_unset_fields(self):
        event = RunEvent("job", RunPhase.SKIPPED, T0, reason="overlapping")
        assert event.to_dict() == {
            "task": "job",
            "phase": "skipped",
            "at": T0.isoformat(),
            "reason": "overlapping",
        }
