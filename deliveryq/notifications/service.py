"""Notification service: the caller-facing entry point.

notify() records a notification and, when email is enabled for the event
type, renders it and hands it to the delivery queue. Delivery itself happens
later in the queue processor. Email problems are reported in the result and
never raised into the caller's flow.
"""

import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from deliveryq.domain.models import EnqueueRequest, NotificationRecord
from deliveryq.logging import get_logger
from deliveryq.logging.context import log_context
from deliveryq.persistence.database import get_session
from deliveryq.persistence.exceptions import PersistenceError
from deliveryq.persistence.repositories import NotificationRepository
from deliveryq.queue.enqueue import EmailQueue
from deliveryq.queue.exceptions import EnqueueError
from deliveryq.utils.timestamps import Clock, utc_now

from . import catalog
from .catalog import EVENT_TYPES, EventType
from .models import NotificationError, NotifyResult
from .templates import TemplateRenderer
from .unsubscribe import UnsubscribeTokenManager

logger = get_logger(__name__, component="notification")


class NotificationService:
    """Service that turns domain events into queued emails.

    Coordinates the notify flow:
    1. Store the notification record
    2. Decide whether email is enabled (explicit flag, else catalog default)
    3. Resolve an unsubscribe link (missing link is not an error)
    4. Render the event template
    5. Enqueue, with a batch key for batchable event types
    """

    def __init__(
        self,
        email_queue: EmailQueue,
        template_renderer: Optional[TemplateRenderer] = None,
        unsubscribe_manager: Optional[UnsubscribeTokenManager] = None,
        registry: Mapping[str, EventType] = EVENT_TYPES,
        clock: Clock = utc_now,
        logger_instance: Optional[logging.Logger] = None,
    ):
        """Initialize notification service.

        Args:
            email_queue: Queue that receives rendered emails
            template_renderer: Renderer instance (creates default if None)
            unsubscribe_manager: Token manager (creates default if None)
            registry: Event catalog
            clock: Source of "now" for records and batch windows
            logger_instance: Logger instance (uses module logger if None)
        """
        self.email_queue = email_queue
        self.registry = registry
        self.template_renderer = template_renderer or TemplateRenderer(registry=registry)
        self.unsubscribe_manager = unsubscribe_manager or UnsubscribeTokenManager(clock=clock)
        self.clock = clock
        self.logger = logger_instance or logger

    def notify(
        self,
        user_id: str,
        to_email: Optional[str],
        event_type: str,
        title: str,
        message: str,
        link: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        email_enabled: Optional[bool] = None,
    ) -> NotifyResult:
        """Record a notification and queue its email.

        Args:
            user_id: Recipient user id
            to_email: Recipient address; None disables email
            event_type: Catalog event type (unknown types are allowed)
            title: Notification title, also the fallback subject
            message: Notification body text
            link: Optional action link (relative links resolve against the frontend)
            metadata: Event-specific template data
            email_enabled: Override the catalog's default email preference

        Returns:
            NotifyResult describing what happened
        """
        metadata = dict(metadata or {})
        notification_id = self._store_record(user_id, event_type, title, message, link, metadata)

        with log_context(notification_id=notification_id, event_type=event_type):
            wants_email = (
                email_enabled
                if email_enabled is not None
                else catalog.default_email_enabled(event_type, self.registry)
            )
            if not wants_email or not to_email:
                reason = "email_disabled" if not wants_email else "no_recipient"
                self.logger.info(
                    f"Skipping email for {event_type} notification",
                    extra={"event": "notification.email.skipped", "reason": reason},
                )
                return NotifyResult(notification_id=notification_id, status="skipped")

            try:
                request = self._build_request(
                    notification_id, user_id, to_email, event_type, title, message, link, metadata
                )
                queue_item_id = self.email_queue.enqueue(request)
            except (NotificationError, EnqueueError, ValidationError) as e:
                self.logger.error(
                    f"Email queueing failed for {event_type} notification: {e}",
                    extra={"event": "notification.email.failed", "error_type": type(e).__name__},
                )
                return NotifyResult(notification_id=notification_id, status="failed", error=str(e))

            self.logger.info(
                f"Queued email for {event_type} notification",
                extra={
                    "event": "notification.email.queued",
                    "queue_item_id": queue_item_id,
                    "batched": request.is_batched,
                },
            )
            return NotifyResult(
                notification_id=notification_id,
                status="queued",
                queue_item_id=queue_item_id,
                batched=request.is_batched,
            )

    def _store_record(
        self,
        user_id: str,
        event_type: str,
        title: str,
        message: str,
        link: Optional[str],
        metadata: Dict[str, Any],
    ) -> Optional[str]:
        """Insert the notification record. Returns None if the store failed."""
        record = NotificationRecord(
            id=uuid.uuid4().hex,
            user_id=user_id,
            event_type=event_type,
            category=catalog.get_category(event_type, self.registry),
            title=title,
            message=message,
            link=link,
            metadata=metadata,
            created_at=self.clock(),
        )
        try:
            with get_session() as session:
                return NotificationRepository(session).insert(record)
        except PersistenceError as e:
            self.logger.error(
                f"Failed to store notification for user {user_id}: {e}",
                extra={"event": "notification.record.failed", "event_type": event_type},
            )
            return None

    def _build_request(
        self,
        notification_id: Optional[str],
        user_id: str,
        to_email: str,
        event_type: str,
        title: str,
        message: str,
        link: Optional[str],
        metadata: Dict[str, Any],
    ) -> EnqueueRequest:
        template_data = {
            **metadata,
            "title": metadata.get("title") or title,
            "message": message,
            "link": link,
        }

        token = self.unsubscribe_manager.get_or_create(user_id, event_type)
        unsubscribe_url = self.unsubscribe_manager.build_unsubscribe_url(token) if token else None

        html_body = self.template_renderer.render(
            event_type, template_data, unsubscribe_url=unsubscribe_url
        )
        subject = catalog.build_subject(event_type, title, metadata, self.registry)

        batch_key = None
        batch_until = None
        if catalog.is_batchable(event_type, self.registry):
            batch_key = f"{event_type}_{user_id}"
            batch_until = self.clock() + timedelta(
                seconds=catalog.get_batch_window(event_type, self.registry)
            )

        return EnqueueRequest(
            user_id=user_id,
            to_email=to_email,
            subject=subject,
            html_body=html_body,
            notification_id=notification_id,
            event_type=event_type,
            payload=template_data,
            batch_key=batch_key,
            batch_until=batch_until,
        )
