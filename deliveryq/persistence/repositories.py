"""Data access layer (repositories) for persistence operations.

Repositories wrap a session, speak domain models, and translate SQLAlchemy
failures into PersistenceError. QueueRepository exposes the three primitive
store operations (insert, update_where, query) plus the typed helpers the
queue processor is built from. Every status change goes through transition(),
a conditional update checked against the allowed transition table whose
affected row count tells the caller whether it won.
"""

import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from deliveryq.domain.models import (
    NotificationRecord,
    QueueItem,
    QueueStatus,
    UnsubscribeToken,
    can_transition,
)
from deliveryq.utils.timestamps import to_db_timestamp

from .exceptions import ConcurrentUpdateError, DataIntegrityError, PersistenceError
from .schema import NotificationModel, QueueItemModel, UnsubscribeTokenModel

logger = logging.getLogger(__name__)

# Statuses the expiry sweep may move to expired
EXPIRABLE_STATUSES = (QueueStatus.PENDING, QueueStatus.BATCHED)


def _column_value(value: Any) -> Any:
    """Convert a domain value into its stored column representation."""
    if isinstance(value, datetime):
        return to_db_timestamp(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return json.dumps(value, default=str, sort_keys=True)
    return value


class QueueRepository:
    """Repository for email_queue rows."""

    def __init__(self, session: Session):
        self.session = session

    # ------------------------------------------------------------------
    # Store primitives
    # ------------------------------------------------------------------

    def insert(self, item: QueueItem) -> str:
        """Insert a new queue item.

        Args:
            item: Fully populated QueueItem

        Returns:
            The id of the inserted row

        Raises:
            DataIntegrityError: If the id already exists
            PersistenceError: If database error occurs
        """
        try:
            self.session.add(QueueItemModel.from_domain(item))
            self.session.flush()
            return item.id

        except IntegrityError as e:
            logger.error(f"Integrity error inserting queue item {item.id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to insert queue item: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error inserting queue item {item.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to insert queue item: {e}") from e

    def update_where(self, *criteria, **fields) -> int:
        """Update every row matching all criteria with the given field values.

        Datetimes, enums and dicts in ``fields`` are converted to their stored
        form. Criteria are SQLAlchemy expressions over QueueItemModel columns.

        Returns:
            Number of rows affected

        Raises:
            PersistenceError: If database error occurs
        """
        if not fields:
            raise ValueError("update_where() requires at least one field to set")

        values = {name: _column_value(value) for name, value in fields.items()}
        try:
            stmt = (
                update(QueueItemModel)
                .where(*criteria)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            result = self.session.execute(stmt)
            return result.rowcount

        except SQLAlchemyError as e:
            logger.error(f"Error updating queue items: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update queue items: {e}") from e

    def transition(
        self,
        *criteria,
        source: Iterable[QueueStatus],
        target: QueueStatus,
        **fields,
    ) -> int:
        """Move rows matching criteria from any source status to target.

        The status condition is part of the update, so only rows still in a
        source status change. Every source -> target pair must be a legal
        queue item transition.

        Returns:
            Number of rows affected

        Raises:
            ValueError: If a source -> target pair is not a legal transition
            PersistenceError: If database error occurs
        """
        sources = [QueueStatus(status) for status in source]
        illegal = [status.value for status in sources if not can_transition(status, target)]
        if illegal:
            raise ValueError(
                f"Illegal queue item transition {', '.join(illegal)} -> {QueueStatus(target).value}"
            )

        return self.update_where(
            *criteria,
            QueueItemModel.status.in_([status.value for status in sources]),
            status=target,
            **fields,
        )

    def query(self, *criteria, order_by: Sequence = (), limit: Optional[int] = None) -> List[QueueItem]:
        """Select queue items matching all criteria.

        Args:
            *criteria: SQLAlchemy expressions over QueueItemModel columns
            order_by: Column expressions to order by
            limit: Maximum number of rows to return

        Returns:
            List of QueueItem domain models

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            stmt = select(QueueItemModel).where(*criteria)
            if order_by:
                stmt = stmt.order_by(*order_by)
            if limit is not None:
                stmt = stmt.limit(limit)

            models = self.session.execute(stmt).scalars().all()
            return [model.to_domain() for model in models]

        except SQLAlchemyError as e:
            logger.error(f"Error querying queue items: {e}", exc_info=True)
            raise PersistenceError(f"Failed to query queue items: {e}") from e

    # ------------------------------------------------------------------
    # Typed helpers
    # ------------------------------------------------------------------

    def get(self, item_id: str) -> Optional[QueueItem]:
        """Retrieve a queue item by id, or None if it doesn't exist."""
        items = self.query(QueueItemModel.id == item_id, limit=1)
        return items[0] if items else None

    def claim(self, item_id: str) -> bool:
        """Atomically move an item from pending to processing.

        Returns:
            True only if this call performed the transition
        """
        affected = self.transition(
            QueueItemModel.id == item_id,
            source=[QueueStatus.PENDING],
            target=QueueStatus.PROCESSING,
        )
        return affected == 1

    def expire_stale(self, cutoff: datetime, expired_at: datetime) -> int:
        """Expire every pending or batched item created before cutoff.

        Returns:
            Number of items expired
        """
        return self.transition(
            QueueItemModel.created_at < to_db_timestamp(cutoff),
            source=EXPIRABLE_STATUSES,
            target=QueueStatus.EXPIRED,
            expired_at=expired_at,
        )

    def fetch_due_pending(self, now: datetime, limit: int) -> List[QueueItem]:
        """Pending items whose scheduled time has arrived, oldest first."""
        return self.query(
            QueueItemModel.status == QueueStatus.PENDING.value,
            QueueItemModel.scheduled_for <= to_db_timestamp(now),
            order_by=(QueueItemModel.created_at.asc(), QueueItemModel.id.asc()),
            limit=limit,
        )

    def fetch_ready_batches(self, now: datetime, limit: int) -> List[QueueItem]:
        """Batched items whose window has closed, oldest first."""
        return self.query(
            QueueItemModel.status == QueueStatus.BATCHED.value,
            QueueItemModel.batch_until < to_db_timestamp(now),
            order_by=(QueueItemModel.created_at.asc(), QueueItemModel.id.asc()),
            limit=limit,
        )

    def mark_delivered(
        self, item_id: str, provider_message_id: Optional[str], sent_at: datetime
    ) -> bool:
        """Move a claimed item from processing to sent.

        Returns:
            True if the row was in processing and is now sent
        """
        affected = self.transition(
            QueueItemModel.id == item_id,
            source=[QueueStatus.PROCESSING],
            target=QueueStatus.SENT,
            sent_at=sent_at,
            provider_message_id=provider_message_id,
        )
        return affected == 1

    def record_failure(self, item: QueueItem, error: str) -> QueueStatus:
        """Record a failed delivery attempt for a claimed item.

        The attempt counter is incremented. The item returns to pending while
        attempts remain and becomes failed once they are exhausted.

        Args:
            item: The item as it was fetched before the claim
            error: Error description to store in last_error

        Returns:
            The status the item was moved to

        Raises:
            ConcurrentUpdateError: If the item was no longer in processing
        """
        attempts = item.attempts + 1
        status = QueueStatus.FAILED if attempts >= item.max_attempts else QueueStatus.PENDING

        affected = self.transition(
            QueueItemModel.id == item.id,
            source=[QueueStatus.PROCESSING],
            target=status,
            attempts=attempts,
            last_error=error,
        )
        if affected != 1:
            raise ConcurrentUpdateError(
                f"Queue item {item.id} left processing before its failure was recorded",
                expected=1,
                affected=affected,
            )
        return status

    def consolidate_group(
        self, member_ids: Iterable[str], digest: QueueItem, sent_at: datetime
    ) -> str:
        """Mark a batch group sent and insert its digest item.

        Both writes happen in the caller's transaction. If any member is no
        longer batched, nothing is inserted and ConcurrentUpdateError is
        raised so the caller's session rolls the member updates back.

        Returns:
            The digest item id

        Raises:
            ConcurrentUpdateError: If fewer members were updated than given
            PersistenceError: If database error occurs
        """
        ids = list(member_ids)
        affected = self.transition(
            QueueItemModel.id.in_(ids),
            source=[QueueStatus.BATCHED],
            target=QueueStatus.SENT,
            sent_at=sent_at,
        )
        if affected != len(ids):
            raise ConcurrentUpdateError(
                f"Batch group changed during consolidation: updated {affected} of {len(ids)} members",
                expected=len(ids),
                affected=affected,
            )
        return self.insert(digest)

    def count_by_status(self) -> Dict[str, int]:
        """Count queue items per status. Every status is present in the result."""
        try:
            stmt = select(QueueItemModel.status, func.count()).group_by(QueueItemModel.status)
            rows = self.session.execute(stmt).all()

        except SQLAlchemyError as e:
            logger.error(f"Error counting queue items: {e}", exc_info=True)
            raise PersistenceError(f"Failed to count queue items: {e}") from e

        counts = {status.value: 0 for status in QueueStatus}
        for status, count in rows:
            counts[status] = count
        return counts


class UnsubscribeTokenRepository:
    """Repository for email_unsubscribe_tokens rows."""

    def __init__(self, session: Session):
        self.session = session

    def find_active(self, user_id: str, event_type: Optional[str]) -> Optional[UnsubscribeToken]:
        """Find the oldest unused token for a (user, event type) scope.

        A None event_type matches only global tokens.

        Raises:
            PersistenceError: If database error occurs
        """
        scope = (
            UnsubscribeTokenModel.event_type.is_(None)
            if event_type is None
            else UnsubscribeTokenModel.event_type == event_type
        )
        try:
            stmt = (
                select(UnsubscribeTokenModel)
                .where(
                    UnsubscribeTokenModel.user_id == user_id,
                    UnsubscribeTokenModel.used_at.is_(None),
                    scope,
                )
                .order_by(UnsubscribeTokenModel.created_at.asc())
                .limit(1)
            )
            model = self.session.execute(stmt).scalar_one_or_none()
            return model.to_domain() if model is not None else None

        except SQLAlchemyError as e:
            logger.error(f"Error looking up unsubscribe token for user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to look up unsubscribe token: {e}") from e

    def create(self, token: UnsubscribeToken) -> UnsubscribeToken:
        """Persist a new token.

        Raises:
            DataIntegrityError: If the token value already exists
            PersistenceError: If database error occurs
        """
        try:
            model = UnsubscribeTokenModel(
                id=token.id,
                user_id=token.user_id,
                token=token.token,
                event_type=token.event_type,
                used_at=to_db_timestamp(token.used_at),
                created_at=to_db_timestamp(token.created_at),
            )
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

        except IntegrityError as e:
            logger.error(f"Integrity error creating unsubscribe token: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to create unsubscribe token: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error creating unsubscribe token: {e}", exc_info=True)
            raise PersistenceError(f"Failed to create unsubscribe token: {e}") from e


class NotificationRepository:
    """Repository for notification records."""

    def __init__(self, session: Session):
        self.session = session

    def insert(self, record: NotificationRecord) -> str:
        try:
            self.session.add(NotificationModel.from_domain(record))
            self.session.flush()
            return record.id

        except IntegrityError as e:
            logger.error(f"Integrity error inserting notification {record.id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to insert notification: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error inserting notification {record.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to insert notification: {e}") from e

    def get(self, notification_id: str) -> Optional[NotificationRecord]:
        try:
            model = self.session.get(NotificationModel, notification_id)
            return model.to_domain() if model is not None else None

        except SQLAlchemyError as e:
            logger.error(f"Error retrieving notification {notification_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve notification: {e}") from e

    def mark_email_sent(
        self, notification_id: str, sent_at: datetime, message_id: Optional[str]
    ) -> bool:
        """Record email delivery on a notification.

        Returns:
            False if no notification with that id exists
        """
        try:
            stmt = (
                update(NotificationModel)
                .where(NotificationModel.id == notification_id)
                .values(
                    email_sent=True,
                    email_sent_at=to_db_timestamp(sent_at),
                    email_message_id=message_id,
                )
                .execution_options(synchronize_session=False)
            )
            result = self.session.execute(stmt)
            return result.rowcount == 1

        except SQLAlchemyError as e:
            logger.error(
                f"Error recording email delivery for notification {notification_id}: {e}",
                exc_info=True,
            )
            raise PersistenceError(f"Failed to update notification: {e}") from e
