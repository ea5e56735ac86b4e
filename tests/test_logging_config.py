"""Tests for logging configuration and formatters."""

import io
import json
import logging

import pytest

from mailnotify.logging import ComponentLoggerAdapter, get_logger
from mailnotify.logging.config import (
    ContextualFilter,
    JSONFormatter,
    KeyValueFormatter,
    configure_logging,
)
from mailnotify.logging.context import clear_log_context, log_context


@pytest.fixture(autouse=True)
def clean_context():
    """Clear logging context before and after each test."""
    clear_log_context()
    yield
    clear_log_context()


@pytest.fixture
def restore_root_logger():
    """Put the root logger back after configure_logging replaces its handlers."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def make_record(message="Test message", **extra):
    return logging.getLogger("test").makeRecord(
        "mailnotify.test", logging.INFO, "test.py", 1, message, (), None, extra=extra or None
    )


def test_json_formatter_basic():
    """Test JSONFormatter produces valid JSON with mandatory fields."""
    log_obj = json.loads(JSONFormatter().format(make_record()))

    assert log_obj["level"] == "INFO"
    assert log_obj["message"] == "Test message"
    assert log_obj["logger"] == "mailnotify.test"
    assert log_obj["timestamp"].endswith("Z")


def test_json_formatter_with_extra_fields():
    """Test JSONFormatter includes extra fields."""
    record = make_record(event="notification.send.success", attempts=2, retry_remaining=False)

    log_obj = json.loads(JSONFormatter().format(record))

    assert log_obj["event"] == "notification.send.success"
    assert log_obj["attempts"] == 2
    assert log_obj["retry_remaining"] is False


def test_json_formatter_stringifies_unknown_types():
    """Test that non-JSON values are rendered as strings."""
    record = make_record(path=object())

    log_obj = json.loads(JSONFormatter().format(record))

    assert isinstance(log_obj["path"], str)


def test_key_value_formatter_appends_sorted_pairs():
    """Test KeyValueFormatter output format."""
    formatter = KeyValueFormatter("%(levelname)s %(message)s")
    record = make_record(event="transport.send.retry", attempt=1, reason="server busy", ok=True)

    output = formatter.format(record)

    assert output == 'INFO Test message attempt=1 event=transport.send.retry ok=true reason="server busy"'


def test_key_value_formatter_skips_service_fields():
    """Test that static service metadata is left out of key=value pairs."""
    formatter = KeyValueFormatter("%(message)s")
    record = make_record()
    ContextualFilter(service="mail-notify", environment="test").filter(record)

    assert formatter.format(record) == "Test message"


def test_contextual_filter_adds_static_and_context_fields():
    """Test ContextualFilter adds service metadata and log context."""
    record = make_record()

    with log_context(notification_type="report_ready", notification_id="a1b2c3"):
        ContextualFilter(service="mail-notify", environment="test").filter(record)

    assert record.service == "mail-notify"
    assert record.environment == "test"
    assert record.notification_type == "report_ready"
    assert record.notification_id == "a1b2c3"


def test_contextual_filter_keeps_explicit_extra():
    """Test that fields passed via extra win over context fields."""
    record = make_record(notification_type="explicit")

    with log_context(notification_type="from_context"):
        ContextualFilter().filter(record)

    assert record.notification_type == "explicit"


def test_get_logger_with_component():
    """Test that component loggers stamp the component on records."""
    logger = get_logger("mailnotify.test", component="transport")

    assert isinstance(logger, ComponentLoggerAdapter)
    _, kwargs = logger.process("msg", {"extra": {"event": "x"}})
    assert kwargs["extra"] == {"component": "transport", "event": "x"}


def test_get_logger_without_component():
    """Test that a plain logger is returned without a component."""
    assert isinstance(get_logger("mailnotify.test"), logging.Logger)


def test_configure_logging_json(restore_root_logger):
    """Test end-to-end JSON logging with context."""
    stream = io.StringIO()
    configure_logging(level="INFO", format_type="json", environment="test", stream=stream)

    logger = get_logger("mailnotify.test", component="notification")
    with log_context(notification_type="report_ready"):
        logger.info("Notification sent", extra={"event": "notification.send.success"})

    lines = [json.loads(line) for line in stream.getvalue().splitlines()]
    sent = lines[-1]
    assert sent["message"] == "Notification sent"
    assert sent["event"] == "notification.send.success"
    assert sent["component"] == "notification"
    assert sent["notification_type"] == "report_ready"
    assert sent["service"] == "mail-notify"
    assert sent["environment"] == "test"


def test_configure_logging_quiets_aws_sdk(restore_root_logger):
    """Test that AWS SDK loggers stay at WARNING under DEBUG."""
    configure_logging(level="DEBUG", format_type="key-value", stream=io.StringIO())

    assert logging.getLogger("botocore").level == logging.WARNING
    assert logging.getLogger("boto3").level == logging.WARNING


@pytest.mark.parametrize("level,format_type", [("VERBOSE", "json"), ("INFO", "xml")])
def test_configure_logging_rejects_invalid_options(level, format_type, restore_root_logger):
    """Test that invalid level or format raises ValueError."""
    with pytest.raises(ValueError):
        configure_logging(level=level, format_type=format_type)
