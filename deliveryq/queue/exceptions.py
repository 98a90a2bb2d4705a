"""Queue exceptions."""


class QueueError(Exception):
    """Base exception for queue operations."""

    pass


class EnqueueError(QueueError):
    """Raised when a notification could not be added to the queue.

    The caller decides whether to retry; nothing was written.
    """

    pass
