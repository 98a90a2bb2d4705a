"""Context propagation for structured logging.

Fields pushed here (``cycle_id``, ``queue_item_id``, ``batch_key``...) are
injected into every log record emitted inside the scope by ContextualFilter.
Context lives in a ContextVar, so scheduler worker threads each see their own.
"""

from contextvars import ContextVar, Token
from typing import Any, Dict, Optional

LogContextVar: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})


def get_log_context() -> Dict[str, Any]:
    """Return a copy of the current logging context."""
    return LogContextVar.get().copy()


def push_log_context(**kwargs) -> Token:
    """Merge fields into the logging context.

    Args:
        **kwargs: Key-value pairs to add to the logging context

    Returns:
        Token to pass to pop_log_context() to restore the previous state

    Example:
        >>> token = push_log_context(cycle_id="c0ffee")
        >>> # ... every record now carries cycle_id ...
        >>> pop_log_context(token)
    """
    return LogContextVar.set({**LogContextVar.get(), **kwargs})


def pop_log_context(token: Token) -> None:
    """Restore the logging context saved by push_log_context()."""
    LogContextVar.reset(token)


def clear_log_context() -> None:
    """Drop all context fields (test helper)."""
    LogContextVar.set({})


class log_context:
    """Context manager that scopes logging fields to a block.

    The previous context is restored on exit, including when the block raises.

    Example:
        >>> with log_context(cycle_id="c0ffee", queue_item_id="ab12"):
        ...     logger.info("Delivering item")
    """

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.token: Optional[Token] = None

    def __enter__(self):
        self.token = push_log_context(**self.kwargs)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.token is not None:
            pop_log_context(self.token)
            self.token = None
        return False
