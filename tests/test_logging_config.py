"""Tests for logging configuration and formatters."""

import json
import logging
import sys
from datetime import datetime, timezone

import pytest

from deliveryq.logging import ComponentLoggerAdapter, get_logger
from deliveryq.logging.config import (
    SERVICE_NAME,
    ContextualFilter,
    JSONFormatter,
    KeyValueFormatter,
    configure_logging,
)
from deliveryq.logging.context import log_context


@pytest.fixture
def logger():
    """Create a test logger with no handlers attached."""
    test_logger = logging.getLogger("test_logger")
    test_logger.setLevel(logging.DEBUG)
    test_logger.handlers.clear()

    yield test_logger

    test_logger.handlers.clear()


@pytest.fixture
def restore_root_logger():
    """Restore root logger state changed by configure_logging()."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level

    yield root

    root.handlers[:] = handlers
    root.setLevel(level)
    logging.captureWarnings(False)


def _record(logger, message="Queue cycle started", **extra):
    return logger.makeRecord(
        "deliveryq.queue.processor", logging.INFO, "processor.py", 1, message, (), None, extra=extra
    )


def test_json_formatter_basic(logger):
    """Test JSONFormatter produces valid JSON with mandatory fields."""
    output = JSONFormatter().format(_record(logger))

    log_obj = json.loads(output)
    assert log_obj["level"] == "INFO"
    assert log_obj["message"] == "Queue cycle started"
    assert log_obj["logger"] == "deliveryq.queue.processor"
    assert log_obj["timestamp"].endswith("Z")


def test_json_formatter_with_extra_fields(logger):
    """Test JSONFormatter includes extra fields and stringifies the rest."""
    record = _record(
        logger,
        event="queue.cycle.completed",
        sent=4,
        aborted=False,
        finished_at=datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc),
        status=object(),
    )

    log_obj = json.loads(JSONFormatter().format(record))

    assert log_obj["event"] == "queue.cycle.completed"
    assert log_obj["sent"] == 4
    assert log_obj["aborted"] is False
    assert log_obj["finished_at"] == "2026-03-02T09:00:00+00:00"
    assert isinstance(log_obj["status"], str)


def test_json_formatter_includes_exception(logger):
    try:
        raise RuntimeError("store unavailable")
    except RuntimeError:
        record = logger.makeRecord(
            "test", logging.ERROR, "test.py", 1, "Queue cycle aborted", (), sys.exc_info()
        )

    log_obj = json.loads(JSONFormatter().format(record))
    assert "RuntimeError: store unavailable" in log_obj["exc_info"]


def test_key_value_formatter(logger):
    """Test KeyValueFormatter renders sorted key=value pairs."""
    formatter = KeyValueFormatter("%(levelname)s %(message)s")
    record = _record(
        logger,
        event="queue.item.sent",
        attempt=1,
        provider_message_id=None,
        last_error="451 try again",
        ok=True,
    )

    output = formatter.format(record)

    assert output.startswith("INFO Queue cycle started")
    assert "attempt=1" in output
    assert "event=queue.item.sent" in output
    assert 'last_error="451 try again"' in output
    assert "ok=true" in output
    assert "provider_message_id=null" in output
    assert output.index("attempt=") < output.index("event=")


def test_key_value_formatter_omits_static_fields(logger):
    formatter = KeyValueFormatter("%(message)s")
    record = _record(logger)
    ContextualFilter(service="svc", environment="test").filter(record)

    output = formatter.format(record)

    assert "service=" not in output
    assert "environment=" not in output


def test_contextual_filter_adds_static_fields(logger):
    """Test ContextualFilter adds static service and environment fields."""
    record = _record(logger)

    assert ContextualFilter(environment="staging").filter(record) is True

    assert record.service == SERVICE_NAME
    assert record.environment == "staging"


def test_contextual_filter_adds_context_fields(logger):
    """Test ContextualFilter copies fields from the active log context."""
    with log_context(cycle_id="c0ffee", queue_item_id="ab12"):
        record = _record(logger)
        ContextualFilter().filter(record)

    assert record.cycle_id == "c0ffee"
    assert record.queue_item_id == "ab12"


def test_contextual_filter_keeps_explicit_extra(logger):
    """Test explicit extra values win over context values."""
    with log_context(batch_key="new_message_user-1"):
        record = _record(logger, batch_key="explicit")
        ContextualFilter().filter(record)

    assert record.batch_key == "explicit"


def test_component_logger_adapter_merges_extra(caplog):
    """Test get_logger() stamps the component and keeps per-call extras."""
    adapter = get_logger("deliveryq.tests.adapter", component="queue")
    assert isinstance(adapter, ComponentLoggerAdapter)

    with caplog.at_level(logging.INFO, logger="deliveryq.tests.adapter"):
        adapter.info("Email enqueued", extra={"event": "queue.enqueued"})

    record = caplog.records[-1]
    assert record.component == "queue"
    assert record.event == "queue.enqueued"


def test_get_logger_without_component():
    assert isinstance(get_logger("deliveryq.tests.plain"), logging.Logger)


def test_configure_logging_json(restore_root_logger, capsys):
    """Test configure_logging installs a JSON handler on stdout."""
    configure_logging(level="DEBUG", format_type="json", environment="test")

    root = restore_root_logger
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, JSONFormatter)

    line = capsys.readouterr().out.strip().splitlines()[-1]
    log_obj = json.loads(line)
    assert log_obj["event"] == "logging.configured"
    assert log_obj["environment"] == "test"


def test_configure_logging_quiets_third_party_loggers(restore_root_logger):
    configure_logging(level="INFO", format_type="key-value")

    assert logging.getLogger("apscheduler").level == logging.WARNING
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING


def test_configure_logging_invalid_level():
    with pytest.raises(ValueError, match="Invalid log level"):
        configure_logging(level="LOUD")


def test_configure_logging_invalid_format():
    with pytest.raises(ValueError, match="Invalid log format"):
        configure_logging(level="INFO", format_type="xml")
