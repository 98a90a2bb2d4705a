"""Result types and exceptions for the notification service."""

from dataclasses import dataclass
from typing import Optional


class NotificationError(Exception):
    """Base exception for notification-related errors."""

    pass


class NotificationTemplateError(NotificationError):
    """Raised when template rendering fails (missing template, bad variable)."""

    pass


@dataclass
class NotifyResult:
    """Outcome of NotificationService.notify().

    Attributes:
        notification_id: Id of the stored notification record, None if the
            insert failed
        status: "queued" (email enqueued), "skipped" (email disabled) or
            "failed" (rendering or enqueue failed)
        queue_item_id: Id of the enqueued queue item, if any
        batched: Whether the queue item waits for digest consolidation
        error: Error description when status is "failed"
    """

    notification_id: Optional[str]
    status: str  # "queued", "skipped", "failed"
    queue_item_id: Optional[str] = None
    batched: bool = False
    error: Optional[str] = None

    def is_queued(self) -> bool:
        return self.status == "queued"
