"""Tests for structured logging configuration."""

import json
import logging
from unittest.mock import patch

from quotaguard.core.logging import (
    ContextFilter,
    JSONFormatter,
    get_log_context,
    get_logger,
    get_logging_config,
    setup_logging,
)


def make_record(msg="Test message", level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


class TestJSONFormatter:
    """Test JSON formatter for structured logging."""

    def test_basic_json_format(self):
        """Test basic JSON formatting."""
        output = JSONFormatter().format(make_record())
        data = json.loads(output)

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert data["source"]["file"] == "test.py"
        assert data["source"]["line"] == 1

    def test_json_format_with_context(self):
        """Test JSON formatting with limiter context fields."""
        record = make_record("Store unavailable")
        record.client_key = "apikey:abc"
        record.policy_id = "free-api"
        record.node_id = "redis-a"
        record.reason = "timeout"
        record.duration_ms = 12.5

        data = json.loads(JSONFormatter().format(record))

        assert data["client_key"] == "apikey:abc"
        assert data["policy_id"] == "free-api"
        assert data["node_id"] == "redis-a"
        assert data["reason"] == "timeout"
        assert data["duration_ms"] == 12.5
        assert "extra" not in data

    def test_json_format_with_extra_fields(self):
        """Unknown fields passed through extra= are grouped under 'extra'."""
        record = make_record("Custom event")
        record.custom_field = "custom_value"
        record.another_field = 42

        data = json.loads(JSONFormatter().format(record))

        assert data["extra"]["custom_field"] == "custom_value"
        assert data["extra"]["another_field"] == 42

    def test_json_format_with_exception(self):
        """Test JSON formatting with exception info."""
        import sys

        try:
            raise ValueError("Test error")
        except ValueError:
            record = make_record("Error occurred", logging.ERROR, sys.exc_info())

        data = json.loads(JSONFormatter().format(record))

        assert isinstance(data["exception"], list)
        assert "ValueError: Test error" in "".join(data["exception"])

    def test_unset_context_fields_are_omitted(self):
        record = make_record()
        ContextFilter().filter(record)

        data = json.loads(JSONFormatter().format(record))

        assert "client_key" not in data
        assert "policy_id" not in data


class TestContextFilter:
    """Test context filter for log records."""

    def test_adds_default_fields(self):
        record = make_record()

        assert ContextFilter().filter(record) is True
        for field in JSONFormatter.CONTEXT_FIELDS:
            assert hasattr(record, field)
        assert record.client_key is None

    def test_preserves_existing_values(self):
        record = make_record()
        record.policy_id = "free-api"

        ContextFilter().filter(record)

        assert record.policy_id == "free-api"


class TestGetLoggingConfig:
    """Test logging configuration generation."""

    def test_default_text_format(self):
        with patch("quotaguard.core.logging.settings") as mock_settings:
            mock_settings.log_format = "text"
            mock_settings.log_level = "INFO"

            config = get_logging_config()

        assert "standard" in config["formatters"]
        assert "json" not in config["formatters"]
        assert config["handlers"]["console"]["formatter"] == "standard"

    def test_structured_format(self):
        with patch("quotaguard.core.logging.settings") as mock_settings:
            mock_settings.log_format = "structured"
            mock_settings.log_level = "debug"

            config = get_logging_config()

        assert config["handlers"]["console"]["formatter"] == "structured"
        assert config["handlers"]["console"]["level"] == "DEBUG"

    def test_json_format(self):
        with patch("quotaguard.core.logging.settings") as mock_settings:
            mock_settings.log_format = "json"
            mock_settings.log_level = "WARNING"

            config = get_logging_config()

        assert "json" in config["formatters"]
        assert config["handlers"]["console"]["formatter"] == "json"
        assert config["loggers"]["quotaguard"]["level"] == "WARNING"

    def test_context_filter_added(self):
        config = get_logging_config()

        assert "context" in config["filters"]
        assert "context" in config["handlers"]["console"]["filters"]


class TestGetLogContext:
    """Test get_log_context helper function."""

    def test_basic_context(self):
        context = get_log_context(client_key="k1", policy_id="free-api", node_id="a")
        assert context == {"client_key": "k1", "policy_id": "free-api", "node_id": "a"}

    def test_context_filters_none(self):
        context = get_log_context(client_key="k1", policy_id=None, reason=None)
        assert context == {"client_key": "k1"}

    def test_context_with_extra(self):
        context = get_log_context(policy_id="p", reason="timeout", attempts=3)

        assert context["reason"] == "timeout"
        assert context["attempts"] == 3


class TestIntegration:
    """Integration tests for logging system."""

    def test_get_logger_default_name(self):
        assert get_logger().name == "quotaguard"

    def test_json_logging_output(self, capsys):
        with patch("quotaguard.core.logging.settings") as mock_settings:
            mock_settings.log_format = "json"
            mock_settings.log_level = "INFO"

            setup_logging()
            logger = get_logger("quotaguard.test")
            logger.warning(
                "Rate limiting fail-open triggered",
                extra=get_log_context(client_key="k1", policy_id="free-api", reason="timeout"),
            )

        data = json.loads(capsys.readouterr().out.strip())

        assert data["level"] == "WARNING"
        assert data["logger"] == "quotaguard.test"
        assert data["client_key"] == "k1"
        assert data["reason"] == "timeout"
