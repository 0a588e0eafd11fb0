"""Tests for cadence.core.logging."""

import json
import logging

import pytest
import structlog

from cadence.core.logging import (
    bind_context,
    clear_context,
    configure_from_settings,
    configure_logging,
    get_logger,
    level_number,
    log_context,
)
from cadence.core.settings import CadenceSettings


def captured_events(caplog) -> list[dict]:
    return [json.loads(record.getMessage()) for record in caplog.records]


class TestConfigureLogging:
    def test_json_output_carries_service_and_context(self, caplog):
        caplog.set_level(logging.INFO)
        configure_logging(level="INFO", json_format=True, service="cadence-test", add_timestamp=False)

        with log_context(task="emails:send"):
            get_logger("cadence.test").info("task_started", attempt=1)

        payload = captured_events(caplog)[-1]
        assert payload["event"] == "task_started"
        assert payload["service"] == "cadence-test"
        assert payload["task"] == "emails:send"
        assert payload["attempt"] == 1
        assert payload["level"] == "info"
        assert "timestamp" not in payload

    def test_level_filters_before_stdlib(self, caplog):
        caplog.set_level(logging.DEBUG)
        configure_logging(level="warning", json_format=True)

        logger = get_logger("cadence.test.level")
        logger.info("quiet")
        logger.warning("loud")

        assert [e["event"] for e in captured_events(caplog)] == ["loud"]

    def test_from_settings(self, caplog):
        caplog.set_level(logging.DEBUG)
        configure_from_settings(CadenceSettings(log_level="ERROR", log_format="json"))

        logger = get_logger("cadence.test.settings")
        logger.warning("dropped")
        logger.error("kept")

        assert [e["event"] for e in captured_events(caplog)] == ["kept"]

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            configure_logging(level="CHATTY")


class TestLevelNumber:
    @pytest.mark.parametrize(("name", "number"), [("debug", 10), ("INFO", 20), ("Error", 40)])
    def test_known(self, name, number):
        assert level_number(name) == number


class TestContext:
    def test_log_context_is_scoped(self):
        clear_context()
        with log_context(task="job"):
            assert structlog.contextvars.get_contextvars() == {"task": "job"}
        assert structlog.contextvars.get_contextvars() == {}

    def test_bind_and_clear(self):
        bind_context(run="r1")
        assert structlog.contextvars.get_contextvars()["run"] == "r1"
        clear_context()
        assert structlog.contextvars.get_contextvars() == {}
