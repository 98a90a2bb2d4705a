"""Database schema definition and ORM models.

This module defines SQLAlchemy ORM models for the queue, unsubscribe token and
notification tables, and the conversions between ORM rows and domain models.

Timestamps are stored as fixed-width ISO 8601 strings (see
deliveryq.utils.timestamps.to_db_timestamp) so range predicates such as
``created_at < cutoff`` compare correctly as text on every backend.
"""

import json
import logging
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, Column, Index, Integer, String, Text, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

from deliveryq.domain.models import NotificationRecord, QueueItem, QueueStatus, UnsubscribeToken
from deliveryq.utils.timestamps import from_db_timestamp, to_db_timestamp

logger = logging.getLogger(__name__)

Base = declarative_base()


class QueueItemModel(Base):
    """ORM model for the email_queue table."""

    __tablename__ = "email_queue"

    id = Column(String(32), primary_key=True, nullable=False)
    notification_id = Column(String(32), nullable=True)

    # Recipient and content
    user_id = Column(String(64), nullable=False)
    to_email = Column(String(320), nullable=False)
    subject = Column(Text, nullable=False)
    html_body = Column(Text, nullable=False)
    event_type = Column(String(64), nullable=True)
    payload = Column(Text, nullable=True)  # JSON object

    # State
    status = Column(String(16), nullable=False)
    batch_key = Column(String(255), nullable=True)
    batch_until = Column(String(32), nullable=True)
    scheduled_for = Column(String(32), nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    last_error = Column(Text, nullable=True)

    # Timestamps and delivery receipt
    created_at = Column(String(32), nullable=False)
    sent_at = Column(String(32), nullable=True)
    expired_at = Column(String(32), nullable=True)
    provider_message_id = Column(String(255), nullable=True)

    __table_args__ = (
        Index("idx_email_queue_status_scheduled", "status", "scheduled_for"),
        Index("idx_email_queue_status_batch_until", "status", "batch_until"),
        Index("idx_email_queue_status_created", "status", "created_at"),
        Index("idx_email_queue_batch_key", "batch_key"),
    )

    def to_domain(self) -> QueueItem:
        return QueueItem(
            id=self.id,
            notification_id=self.notification_id,
            user_id=self.user_id,
            to_email=self.to_email,
            subject=self.subject,
            html_body=self.html_body,
            event_type=self.event_type,
            payload=_load_json(self.payload),
            status=QueueStatus(self.status),
            batch_key=self.batch_key,
            batch_until=from_db_timestamp(self.batch_until),
            scheduled_for=from_db_timestamp(self.scheduled_for),
            attempts=self.attempts or 0,
            max_attempts=self.max_attempts,
            last_error=self.last_error,
            created_at=from_db_timestamp(self.created_at),
            sent_at=from_db_timestamp(self.sent_at),
            expired_at=from_db_timestamp(self.expired_at),
            provider_message_id=self.provider_message_id,
        )

    @classmethod
    def from_domain(cls, item: QueueItem) -> "QueueItemModel":
        return cls(
            id=item.id,
            notification_id=item.notification_id,
            user_id=item.user_id,
            to_email=item.to_email,
            subject=item.subject,
            html_body=item.html_body,
            event_type=item.event_type,
            payload=_dump_json(item.payload),
            status=QueueStatus(item.status).value,
            batch_key=item.batch_key,
            batch_until=to_db_timestamp(item.batch_until),
            scheduled_for=to_db_timestamp(item.scheduled_for),
            attempts=item.attempts,
            max_attempts=item.max_attempts,
            last_error=item.last_error,
            created_at=to_db_timestamp(item.created_at),
            sent_at=to_db_timestamp(item.sent_at),
            expired_at=to_db_timestamp(item.expired_at),
            provider_message_id=item.provider_message_id,
        )


class UnsubscribeTokenModel(Base):
    """ORM model for the email_unsubscribe_tokens table.

    The token value is unique. "One active token per (user, event type)" is
    enforced by lookup-before-create, not by a constraint.
    """

    __tablename__ = "email_unsubscribe_tokens"

    id = Column(String(32), primary_key=True, nullable=False)
    user_id = Column(String(64), nullable=False)
    token = Column(String(128), nullable=False, unique=True)
    event_type = Column(String(64), nullable=True)
    used_at = Column(String(32), nullable=True)
    created_at = Column(String(32), nullable=False)

    __table_args__ = (
        Index("idx_unsubscribe_tokens_scope", "user_id", "event_type", "used_at"),
    )

    def to_domain(self) -> UnsubscribeToken:
        return UnsubscribeToken(
            id=self.id,
            user_id=self.user_id,
            token=self.token,
            event_type=self.event_type,
            used_at=from_db_timestamp(self.used_at),
            created_at=from_db_timestamp(self.created_at),
        )


class NotificationModel(Base):
    """ORM model for the notifications table."""

    __tablename__ = "notifications"

    id = Column(String(32), primary_key=True, nullable=False)
    user_id = Column(String(64), nullable=False)
    event_type = Column(String(64), nullable=False)
    category = Column(String(32), nullable=False)
    title = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    link = Column(Text, nullable=True)
    metadata_json = Column("metadata", Text, nullable=True)
    created_at = Column(String(32), nullable=False)

    # Delivery acknowledgment, written by the queue processor
    email_sent = Column(Boolean, nullable=False, default=False)
    email_sent_at = Column(String(32), nullable=True)
    email_message_id = Column(String(255), nullable=True)

    __table_args__ = (Index("idx_notifications_user_created", "user_id", "created_at"),)

    def to_domain(self) -> NotificationRecord:
        return NotificationRecord(
            id=self.id,
            user_id=self.user_id,
            event_type=self.event_type,
            category=self.category,
            title=self.title,
            message=self.message,
            link=self.link,
            metadata=_load_json(self.metadata_json) or {},
            created_at=from_db_timestamp(self.created_at),
            email_sent=bool(self.email_sent),
            email_sent_at=from_db_timestamp(self.email_sent_at),
            email_message_id=self.email_message_id,
        )

    @classmethod
    def from_domain(cls, record: NotificationRecord) -> "NotificationModel":
        return cls(
            id=record.id,
            user_id=record.user_id,
            event_type=record.event_type,
            category=record.category,
            title=record.title,
            message=record.message,
            link=record.link,
            metadata_json=_dump_json(record.metadata),
            created_at=to_db_timestamp(record.created_at),
            email_sent=record.email_sent,
            email_sent_at=to_db_timestamp(record.email_sent_at),
            email_message_id=record.email_message_id,
        )


def _dump_json(value: Optional[Dict[str, Any]]) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str, sort_keys=True)


def _load_json(value: Optional[str]) -> Optional[Dict[str, Any]]:
    if not value:
        return None
    return json.loads(value)


def create_schema(engine: Engine) -> None:
    """Create all tables and indexes if they don't exist (idempotent).

    Args:
        engine: SQLAlchemy engine instance
    """
    logger.info("Creating database schema if not exists")

    try:
        Base.metadata.create_all(engine, checkfirst=True)
        tables = inspect(engine).get_table_names()
        logger.info(f"Database schema ready. Tables: {', '.join(sorted(tables))}")
    except Exception as e:
        logger.error(f"Failed to create database schema: {e}", exc_info=True)
        raise
