"""Core domain models for the delivery queue.

This module defines the data structures shared by every layer:
- QueueStatus: the closed set of queue item states and their transitions
- QueueItem: one unit of notification work tracked through delivery
- EnqueueRequest: caller input for creating a queue item
- UnsubscribeToken: per-user, per-event-type unsubscribe token
- NotificationRecord: the originating record a queue item may link back to
"""

from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Mapping, Optional

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, Field, field_validator, model_validator

from deliveryq.utils.timestamps import ensure_utc


class QueueStatus(str, Enum):
    """Lifecycle states of a queue item."""

    PENDING = "pending"
    BATCHED = "batched"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        """True for states no transition ever leaves."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: FrozenSet[QueueStatus] = frozenset(
    {QueueStatus.SENT, QueueStatus.FAILED, QueueStatus.EXPIRED}
)

# Every status change the queue processor performs
ALLOWED_TRANSITIONS: Mapping[QueueStatus, FrozenSet[QueueStatus]] = MappingProxyType({
    QueueStatus.PENDING: frozenset({QueueStatus.PROCESSING, QueueStatus.EXPIRED}),
    QueueStatus.BATCHED: frozenset({QueueStatus.SENT, QueueStatus.EXPIRED}),
    QueueStatus.PROCESSING: frozenset(
        {QueueStatus.SENT, QueueStatus.PENDING, QueueStatus.FAILED}
    ),
    QueueStatus.SENT: frozenset(),
    QueueStatus.FAILED: frozenset(),
    QueueStatus.EXPIRED: frozenset(),
})


def can_transition(current: QueueStatus, target: QueueStatus) -> bool:
    """Check whether current -> target is a legal queue item transition."""
    return target in ALLOWED_TRANSITIONS[QueueStatus(current)]


class QueueItem(BaseModel):
    """A unit of notification work.

    Created by callers through EmailQueue.enqueue() and afterwards mutated only
    by the queue processor. An item is logically complete once it reaches
    sent, failed or expired.
    """

    id: str = Field(..., description="Opaque identifier (uuid4 hex)")
    notification_id: Optional[str] = Field(None, description="Linked notification record")
    user_id: str = Field(..., description="Recipient user id")
    to_email: str = Field(..., description="Recipient address")
    subject: str = Field(..., description="Subject line")
    html_body: str = Field(..., description="Rendered message body")
    status: QueueStatus = Field(..., description="Current lifecycle state")
    event_type: Optional[str] = Field(None, description="Notification type the body was rendered for")
    payload: Optional[Dict[str, Any]] = Field(None, description="Template data used for rendering")
    batch_key: Optional[str] = Field(None, description="Digest grouping key")
    batch_until: Optional[datetime] = Field(None, description="End of the batch window")
    scheduled_for: datetime = Field(..., description="Earliest delivery time")
    attempts: int = Field(0, ge=0, description="Delivery attempts made so far")
    max_attempts: int = Field(3, ge=1, description="Attempts allowed before failing")
    last_error: Optional[str] = Field(None, description="Most recent delivery error")
    created_at: datetime = Field(..., description="Creation time")
    sent_at: Optional[datetime] = Field(None, description="Set on transition into sent")
    expired_at: Optional[datetime] = Field(None, description="Set on transition into expired")
    provider_message_id: Optional[str] = Field(None, description="Mail provider message id")

    @field_validator("batch_until", "scheduled_for", "created_at", "sent_at", "expired_at")
    @classmethod
    def ensure_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Treat naive datetimes as UTC."""
        return ensure_utc(v)

    @property
    def is_terminal(self) -> bool:
        return QueueStatus(self.status).is_terminal

    @property
    def attempts_remaining(self) -> int:
        return max(self.max_attempts - self.attempts, 0)


class EnqueueRequest(BaseModel):
    """Caller input for EmailQueue.enqueue().

    Supplying ``batch_key`` holds the item in ``batched`` until ``batch_until``
    so it can be merged into a digest with other items sharing the key.
    """

    user_id: str = Field(..., min_length=1)
    to_email: str = Field(..., description="Recipient address")
    subject: str = Field(..., min_length=1)
    html_body: str = Field(..., description="Rendered message body")
    notification_id: Optional[str] = None
    event_type: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    batch_key: Optional[str] = None
    batch_until: Optional[datetime] = None
    scheduled_for: Optional[datetime] = None
    max_attempts: Optional[int] = Field(None, ge=1, le=10)

    @field_validator("to_email")
    @classmethod
    def validate_recipient(cls, v: str) -> str:
        """Validate and normalize the recipient address."""
        try:
            return validate_email(v.strip(), check_deliverability=False).normalized
        except EmailNotValidError as e:
            raise ValueError(f"Invalid recipient address '{v}': {e}") from e

    @field_validator("subject")
    @classmethod
    def single_line_subject(cls, v: str) -> str:
        """Collapse the subject to a single stripped line."""
        subject = " ".join(v.split())
        if not subject:
            raise ValueError("Subject cannot be empty or whitespace-only")
        return subject

    @field_validator("batch_key")
    @classmethod
    def strip_batch_key(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        stripped = v.strip()
        return stripped or None

    @field_validator("batch_until", "scheduled_for")
    @classmethod
    def ensure_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @model_validator(mode="after")
    def batch_until_requires_key(self):
        if self.batch_until is not None and self.batch_key is None:
            raise ValueError("batch_until is only meaningful together with batch_key")
        return self

    @property
    def is_batched(self) -> bool:
        return self.batch_key is not None


class UnsubscribeToken(BaseModel):
    """Unsubscribe token scoped to a user and optionally an event type.

    A null ``event_type`` means the token unsubscribes from all email.
    """

    id: str
    user_id: str
    token: str = Field(..., min_length=32)
    event_type: Optional[str] = None
    used_at: Optional[datetime] = None
    created_at: datetime

    @property
    def is_active(self) -> bool:
        return self.used_at is None


class NotificationRecord(BaseModel):
    """The originating record a queue item reports delivery back to."""

    id: str
    user_id: str
    event_type: str
    category: str
    title: str
    message: str
    link: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    email_sent: bool = False
    email_sent_at: Optional[datetime] = None
    email_message_id: Optional[str] = None
