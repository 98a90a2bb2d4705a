"""Domain models for the notification delivery queue."""

from .models import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    EnqueueRequest,
    NotificationRecord,
    QueueItem,
    QueueStatus,
    UnsubscribeToken,
    can_transition,
)

__all__ = [
    "QueueStatus",
    "QueueItem",
    "EnqueueRequest",
    "UnsubscribeToken",
    "NotificationRecord",
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATUSES",
    "can_transition",
]
