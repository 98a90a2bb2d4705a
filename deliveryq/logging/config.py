"""Logging configuration for the notification delivery queue."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Literal, Tuple

from .context import get_log_context

LogFormat = Literal["json", "key-value"]

SERVICE_NAME = "notification-delivery-queue"

# LogRecord attributes that are never rendered as extra fields
STANDARD_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "message", "pathname", "process",
    "processName", "relativeCreated", "thread", "threadName", "asctime",
    "exc_info", "exc_text", "stack_info", "taskName",
})

# Libraries that are chatty at INFO; kept at WARNING unless DEBUG is requested
NOISY_LOGGERS = ("apscheduler", "urllib3", "sqlalchemy.engine")


def _extra_fields(record: logging.LogRecord, skip: frozenset) -> Iterator[Tuple[str, Any]]:
    for key, value in record.__dict__.items():
        if key not in skip and not key.startswith("_"):
            yield key, value


class ContextualFilter(logging.Filter):
    """Filter that stamps records with static metadata and the active context.

    Adds ``service`` and ``environment`` to every record, then copies fields
    from the current log_context() scope (cycle_id, queue_item_id, ...)
    without overwriting explicit ``extra`` values.
    """

    def __init__(self, service: str = SERVICE_NAME, environment: str = "local"):
        super().__init__()
        self.service = service
        self.environment = environment

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service
        record.environment = self.environment

        for key, value in get_log_context().items():
            if not hasattr(record, key):
                setattr(record, key, value)

        return True


class JSONFormatter(logging.Formatter):
    """Single-line JSON formatter with stable field names."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "timestamp": self._format_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in _extra_fields(record, STANDARD_ATTRS):
            if isinstance(value, datetime):
                log_obj[key] = value.isoformat()
            elif isinstance(value, (str, int, float, bool, type(None), list, dict)):
                log_obj[key] = value
            else:
                log_obj[key] = str(value)

        if record.exc_info:
            log_obj["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, ensure_ascii=False, default=str)

    @staticmethod
    def _format_timestamp(created: float) -> str:
        """Format a record timestamp as ISO-8601 UTC with millisecond precision."""
        dt = datetime.fromtimestamp(created, tz=timezone.utc)
        return dt.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


class KeyValueFormatter(logging.Formatter):
    """Human-readable formatter.

    Produces: ``timestamp [LEVEL] logger: message key1=value1 key2=value2``
    """

    SKIP_ATTRS = STANDARD_ATTRS | {"service", "environment"}

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)

        extras = [
            f"{key}={self._format_value(value)}"
            for key, value in sorted(_extra_fields(record, self.SKIP_ATTRS))
        ]

        if extras:
            return f"{base} {' '.join(extras)}"
        return base

    @staticmethod
    def _format_value(value: Any) -> str:
        if isinstance(value, str):
            if " " in value or "=" in value or "," in value:
                return f'"{value}"'
            return value
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, bool):
            return str(value).lower()
        if value is None:
            return "null"
        return str(value)


def configure_logging(
    level: str = "INFO",
    format_type: LogFormat = "key-value",
    environment: str = "local",
    service: str = SERVICE_NAME,
) -> None:
    """Configure the root logger.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: 'json' for JSON lines or 'key-value' for human-readable
        environment: Environment label (production, staging, local)
        service: Service name stamped on every record

    Raises:
        ValueError: If level or format_type is invalid
    """
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")

    if format_type not in ("json", "key-value"):
        raise ValueError(f"Invalid log format: {format_type}. Must be 'json' or 'key-value'")

    handler = logging.StreamHandler(sys.stdout)

    if format_type == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            KeyValueFormatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    handler.addFilter(ContextualFilter(service=service, environment=environment))

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Route warnings.warn() (config smells) through the same handler
    logging.captureWarnings(True)

    third_party_level = logging.DEBUG if numeric_level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)

    logging.getLogger(__name__).info(
        "Logging configured",
        extra={
            "event": "logging.configured",
            "component": "logging",
            "log_level": level.upper(),
            "log_format": format_type,
        },
    )
