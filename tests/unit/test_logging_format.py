"""Tests for the unified logging format.

Target format: 2026-01-06T14:05:52Z [source] LEVEL message
"""

from __future__ import annotations

import io
import logging
import re
import sys
from datetime import datetime

import pytest

from grouping.logging_config import TRACE, ISO8601Formatter, configure_logging, get_logger, resolve_level


def make_record(msg="Test message", args=(), level=logging.INFO):
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="",
        lineno=0,
        msg=msg,
        args=args,
        exc_info=None,
    )


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestISO8601Formatter:
    """Test the custom ISO8601 formatter produces correct output."""

    def test_format_matches_target_layout(self):
        """Verify output matches: 2026-01-06T14:05:52Z [source] LEVEL message"""
        output = ISO8601Formatter(source="test").format(make_record())

        pattern = r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z \[test\] INFO Test message$"
        assert re.match(pattern, output), f"Output '{output}' doesn't match expected format"

    def test_timestamp_is_utc(self):
        output = ISO8601Formatter(source="cli").format(make_record("Test"))
        timestamp_str = output.split(" ")[0]

        assert timestamp_str.endswith("Z"), f"Timestamp '{timestamp_str}' should end with Z"
        assert datetime.fromisoformat(timestamp_str.replace("Z", "+00:00")) is not None

    def test_different_log_levels(self):
        formatter = ISO8601Formatter(source="test")

        for level, level_name in [
            (TRACE, "TRACE"),
            (logging.DEBUG, "DEBUG"),
            (logging.INFO, "INFO"),
            (logging.WARNING, "WARNING"),
            (logging.ERROR, "ERROR"),
        ]:
            output = formatter.format(make_record("Message", level=level))
            assert f"] {level_name} " in output, f"Level {level_name} not found in output"

    def test_message_formatting_with_args(self):
        output = ISO8601Formatter(source="test").format(make_record("Moved %s to %s", ("Maya", "Group 3")))

        assert "Moved Maya to Group 3" in output

    def test_exception_appended(self):
        try:
            raise ValueError("bad grade")
        except ValueError:
            record = make_record("Run failed")
            record.exc_info = sys.exc_info()

        output = ISO8601Formatter(source="test").format(record)

        assert "Run failed\nTraceback" in output
        assert "ValueError: bad grade" in output


class TestResolveLevel:
    def test_explicit_level_wins(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "TRACE")

        assert resolve_level(logging.WARNING, debug=True) == logging.WARNING

    def test_debug_flag(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "INFO")

        assert resolve_level(debug=True) == logging.DEBUG

    @pytest.mark.parametrize(
        "env_value,expected",
        [("trace", TRACE), ("DEBUG", logging.DEBUG), ("INFO", logging.INFO), ("", logging.INFO), ("loud", logging.INFO)],
    )
    def test_log_level_env(self, monkeypatch, env_value, expected):
        monkeypatch.setenv("LOG_LEVEL", env_value)

        assert resolve_level() == expected


class TestConfigureLogging:
    def test_configure_logging_returns_root_logger(self):
        logger = configure_logging(source="test")

        assert logger is logging.getLogger()

    def test_debug_flag_sets_level(self):
        assert configure_logging(source="test", debug=True).level == logging.DEBUG

    def test_default_level_is_info(self, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)

        assert configure_logging(source="test", debug=False).level == logging.INFO

    def test_noisy_http_loggers_quieted(self):
        configure_logging(source="test", debug=True)

        assert logging.getLogger("httpx").level == logging.WARNING

    def test_trace_method(self):
        stream = io.StringIO()
        configure_logging(source="test", level=TRACE, stream=stream)

        get_logger("grouping.store").trace("Querying camp_groups")

        assert "[test] TRACE Querying camp_groups" in stream.getvalue()

    def test_end_to_end_log_output(self):
        stream = io.StringIO()
        configure_logging(source="integration_test", debug=False, level=logging.INFO, stream=stream)

        get_logger("test").info("Test integration message")

        pattern = r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z \[integration_test\] INFO Test integration message\n$"
        assert re.match(pattern, stream.getvalue()), f"Output '{stream.getvalue()}' doesn't match expected format"
