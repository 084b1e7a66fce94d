"""
Unit tests for logging_abstraction module.
"""

import json
import logging

import pytest

from yoswit_bridge import logging_abstraction
from yoswit_bridge.correlation import correlation_context
from yoswit_bridge.logging_abstraction import (
    BridgeLogger,
    HumanReadableFormatter,
    JSONFormatter,
    get_logger,
    set_debug,
)


def _record(msg="hello %s", args=("world",), extra_data=None):
    record = logging.LogRecord("yoswit_bridge.test", logging.INFO, __file__, 10, msg, args, None)
    if extra_data is not None:
        record.extra_data = extra_data
    return record


@pytest.fixture
def isolated_loggers(monkeypatch):
    monkeypatch.setattr(logging_abstraction, "_LOGGERS", {})


class TestFormatters:
    """Tests for the JSON and human formatters"""

    def test_json_formatter(self):
        with correlation_context(correlation_id="abc123"):
            line = JSONFormatter().format(_record(extra_data={"device": "M1-1"}))

        data = json.loads(line)
        assert data["message"] == "hello world"
        assert data["level"] == "INFO"
        assert data["correlation_id"] == "abc123"
        assert data["context"] == {"device": "M1-1"}

    def test_human_formatter_with_correlation_id(self):
        with correlation_context(correlation_id="0123456789abcdef"):
            line = HumanReadableFormatter().format(_record(extra_data={"device": "M1-1", "value": True}))

        assert "[01234567]" in line
        assert "hello world" in line
        assert line.endswith("| device=M1-1 | value=True")

    def test_human_formatter_without_correlation_id(self):
        with correlation_context(auto_generate=False):
            line = HumanReadableFormatter().format(_record())

        assert "[--------]" in line


class TestBridgeLogger:
    """Tests for BridgeLogger and get_logger"""

    def test_get_logger_caches(self, isolated_loggers):
        first = get_logger("yoswit_bridge.test_cache")

        assert get_logger("yoswit_bridge.test_cache") is first

    def test_json_file_output(self, tmp_path):
        json_file = tmp_path / "logs" / "bridge.jsonl"
        bridge_logger = BridgeLogger("yoswit_bridge.test_json", log_format="json", json_file=json_file)

        bridge_logger.info("Published %s", "status", extra={"topic": "homebridge/to/set"})
        for handler in bridge_logger.handlers:
            handler.flush()

        data = json.loads(json_file.read_text().splitlines()[-1])
        assert data["message"] == "Published status"
        assert data["context"] == {"topic": "homebridge/to/set"}

    def test_extra_reaches_caplog(self, caplog):
        bridge_logger = BridgeLogger("yoswit_bridge.test_extra", human_output="stderr")

        bridge_logger.warning("Something odd", extra={"mac": "aa:bb"})

        record = caplog.records[-1]
        assert record.getMessage() == "Something odd"
        assert record.extra_data == {"mac": "aa:bb"}

    def test_set_debug(self, isolated_loggers):
        bridge_logger = get_logger("yoswit_bridge.test_debug", human_output="stderr")

        set_debug(True)
        assert bridge_logger.logger.level == logging.DEBUG
        assert all(h.level == logging.DEBUG for h in bridge_logger.handlers)

        set_debug(False)
        assert bridge_logger.logger.level == logging.INFO
