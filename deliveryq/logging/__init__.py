"""Structured logging for the delivery queue.

Every module obtains its logger through get_logger() so that records carry a
``component`` field, and emits an ``event`` key in ``extra`` for each
significant step (``queue.cycle.started``, ``queue.item.sent``, ...).
"""

import logging
from typing import Optional, Union


class ComponentLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges its component field with per-call extras."""

    def process(self, msg, kwargs):
        """Merge adapter extra into the call's extra (call values win)."""
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(
    name: str, component: Optional[str] = None
) -> Union[logging.Logger, ComponentLoggerAdapter]:
    """Get a logger with an optional default component field.

    Args:
        name: Logger name (typically __name__)
        component: Optional component identifier injected into all records

    Returns:
        Logger or ComponentLoggerAdapter instance

    Example:
        >>> logger = get_logger(__name__, component="processor")
        >>> logger.info("Cycle started", extra={"event": "queue.cycle.started"})
    """
    logger = logging.getLogger(name)

    if component:
        return ComponentLoggerAdapter(logger, {"component": component})

    return logger
