"""Non-fatal configuration checks."""

import warnings
from typing import Any, Dict, List

from .duration import DurationParseError, parse_duration


def check_for_warnings(config_dict: Dict[str, Any]) -> List[str]:
    """
    Check raw configuration for settings that are valid but probably unintended.

    Args:
        config_dict: Raw configuration dictionary

    Returns:
        List of warning messages
    """
    warning_messages = []

    queue = config_dict.get("queue") or {}
    if isinstance(queue, dict):
        interval = queue.get("process_interval")
        if isinstance(interval, str):
            try:
                if parse_duration(interval) < 30:
                    warning_messages.append(
                        f"Short process_interval ({interval}) polls the database very frequently"
                    )
            except DurationParseError:
                # Reported properly by model validation
                pass

        batch_size = queue.get("delivery_batch_size")
        if isinstance(batch_size, int) and batch_size > 100:
            warning_messages.append(
                f"Large delivery_batch_size ({batch_size}) may hit mail provider rate limits"
            )

        max_attempts = queue.get("max_attempts")
        if max_attempts == 1:
            warning_messages.append(
                "max_attempts is 1: failed deliveries will not be retried"
            )

    email = config_dict.get("email") or {}
    if isinstance(email, dict) and email.get("transport") == "log":
        warning_messages.append(
            "email.transport is 'log': messages are logged and marked sent, not delivered"
        )

    return warning_messages


def emit_warnings(warning_messages: List[str]) -> None:
    """Emit warning messages through the warnings module."""
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)
