"""Enqueue operation: the only way callers add work to the queue."""

import uuid
from datetime import timedelta
from typing import Optional

from deliveryq.config.models import QueueConfig
from deliveryq.domain.models import EnqueueRequest, QueueItem, QueueStatus
from deliveryq.logging import get_logger
from deliveryq.persistence.database import get_session
from deliveryq.persistence.exceptions import PersistenceError
from deliveryq.persistence.repositories import QueueRepository
from deliveryq.utils.timestamps import Clock, utc_now

from .exceptions import EnqueueError

logger = get_logger(__name__, component="queue")


class EmailQueue:
    """Creates queue items from caller requests.

    A request with a batch key is held in ``batched`` until its batch window
    closes; everything else starts ``pending``. Nothing is delivered
    synchronously.
    """

    def __init__(self, queue_config: Optional[QueueConfig] = None, clock: Clock = utc_now):
        self.config = queue_config or QueueConfig()
        self.clock = clock

    def build_item(self, request: EnqueueRequest) -> QueueItem:
        """Apply defaults and produce the row that enqueue() will insert."""
        now = self.clock()

        batch_until = request.batch_until
        if request.is_batched and batch_until is None:
            batch_until = now + timedelta(seconds=self.config.default_batch_window_seconds)

        return QueueItem(
            id=uuid.uuid4().hex,
            notification_id=request.notification_id,
            user_id=request.user_id,
            to_email=request.to_email,
            subject=request.subject,
            html_body=request.html_body,
            status=QueueStatus.BATCHED if request.is_batched else QueueStatus.PENDING,
            event_type=request.event_type,
            payload=request.payload,
            batch_key=request.batch_key,
            batch_until=batch_until,
            scheduled_for=request.scheduled_for or now,
            attempts=0,
            max_attempts=request.max_attempts or self.config.max_attempts,
            created_at=now,
        )

    def enqueue(self, request: EnqueueRequest) -> str:
        """Insert one queue item.

        Args:
            request: Validated enqueue request

        Returns:
            Id of the new queue item

        Raises:
            EnqueueError: If the store rejected or could not take the insert
        """
        item = self.build_item(request)

        try:
            with get_session() as session:
                QueueRepository(session).insert(item)
        except PersistenceError as e:
            logger.error(
                f"Failed to enqueue email for user {request.user_id}: {e}",
                extra={"event": "queue.enqueue.failed", "user_id": request.user_id},
            )
            raise EnqueueError(f"Failed to enqueue email: {e}") from e

        logger.info(
            "Email enqueued",
            extra={
                "event": "queue.enqueued",
                "queue_item_id": item.id,
                "status": item.status.value,
                "batch_key": item.batch_key,
                "notification_id": item.notification_id,
            },
        )
        return item.id
