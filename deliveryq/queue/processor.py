"""Queue processing: expiry sweep, batch consolidation and delivery.

One cycle runs three phases in order:

1. expire_stale: pending or batched items older than the retention window
   become expired.
2. consolidate_batches: batched items whose window has closed are merged
   into one pending digest per batch key and recipient.
3. deliver_pending: due pending items are claimed one at a time and handed
   to the mail transport.

Each phase reads fresh state from the store, so a cycle that stops early is
safe to repeat on the next tick.
"""

import threading
import uuid
from collections import OrderedDict
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple

from deliveryq.config.models import QueueConfig
from deliveryq.domain.models import QueueItem, QueueStatus
from deliveryq.logging import get_logger
from deliveryq.logging.context import log_context
from deliveryq.notifications.catalog import EVENT_TYPES, EventType, build_digest_subject
from deliveryq.notifications.templates import TemplateRenderer
from deliveryq.persistence.database import get_session
from deliveryq.persistence.exceptions import ConcurrentUpdateError, PersistenceError
from deliveryq.persistence.repositories import NotificationRepository, QueueRepository
from deliveryq.transports.base import MailTransport
from deliveryq.transports.exceptions import TransportError
from deliveryq.utils.timestamps import Clock, utc_now

from .models import BatchStats, CycleResult, DeliveryStats

logger = get_logger(__name__, component="queue")

GroupKey = Tuple[str, str, str]


def group_batches(items: List[QueueItem]) -> "OrderedDict[GroupKey, List[QueueItem]]":
    """Partition batched items into digest groups.

    A group is one batch key for one recipient: items sharing a batch key but
    addressed to different users or addresses get separate digests. Items
    without a batch key form singleton groups keyed by their own id. Groups
    keep the order in which their first member appears.
    """
    groups: "OrderedDict[GroupKey, List[QueueItem]]" = OrderedDict()
    for item in items:
        key = (item.batch_key or item.id, item.user_id, item.to_email)
        groups.setdefault(key, []).append(item)
    return groups


class QueueProcessor:
    """Runs processing cycles against the shared store.

    Only one cycle runs at a time per processor: run_cycle() takes a
    non-blocking lock and returns a skipped result if it is already held.
    Across processes the pending -> processing claim is the only guard
    against double delivery.
    """

    def __init__(
        self,
        transport: MailTransport,
        renderer: Optional[TemplateRenderer] = None,
        queue_config: Optional[QueueConfig] = None,
        clock: Clock = utc_now,
        registry: Mapping[str, EventType] = EVENT_TYPES,
    ):
        """
        Initialize the processor.

        Args:
            transport: Mail transport used for delivery
            renderer: Renderer for digests (a default one is built if None)
            queue_config: Queue settings (defaults if None)
            clock: Source of "now" for every time comparison
            registry: Event catalog used for digest subjects
        """
        self.transport = transport
        self.config = queue_config or QueueConfig()
        self.registry = registry
        self.renderer = renderer or TemplateRenderer(
            registry=registry, preview_limit=self.config.digest_preview_limit
        )
        self.clock = clock
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def run_cycle(self) -> CycleResult:
        """
        Execute one processing cycle.

        Returns:
            CycleResult with per-phase counters. ``skipped`` is set when a
            cycle was already in flight, ``aborted`` when the store failed.

        Raises:
            No exceptions are raised for item, group or store failures; they
            are captured in the result and the logs.
        """
        cycle_id = uuid.uuid4().hex[:12]
        started_at = self.clock()

        if not self._lock.acquire(blocking=False):
            with log_context(cycle_id=cycle_id):
                logger.warning(
                    "Queue cycle skipped: previous cycle still in progress",
                    extra={"event": "queue.cycle.skipped", "reason": "cycle_in_progress"},
                )
            return CycleResult(
                cycle_id=cycle_id,
                started_at=started_at,
                finished_at=self.clock(),
                skipped=True,
            )

        try:
            with log_context(cycle_id=cycle_id):
                result = CycleResult(cycle_id=cycle_id, started_at=started_at)
                logger.info("Queue cycle started", extra={"event": "queue.cycle.started"})

                try:
                    result.expired = self.expire_stale()
                    result.batches = self.consolidate_batches()
                    result.delivery = self.deliver_pending()
                except PersistenceError as e:
                    result.aborted = True
                    result.error = str(e)
                    logger.error(
                        f"Queue cycle aborted: store unavailable: {e}",
                        extra={"event": "queue.cycle.aborted", "error_type": type(e).__name__},
                        exc_info=True,
                    )

                result.finished_at = self.clock()
                logger.info(
                    "Queue cycle completed",
                    extra={"event": "queue.cycle.completed", **result.summary()},
                )
                return result

        finally:
            self._lock.release()

    # ------------------------------------------------------------------
    # Phase 1: expiry
    # ------------------------------------------------------------------

    def expire_stale(self) -> int:
        """
        Expire pending and batched items older than the retention window.

        Returns:
            Number of items expired

        Raises:
            PersistenceError: If the store is unavailable
        """
        now = self.clock()
        cutoff = now - timedelta(seconds=self.config.retention_seconds)

        with get_session() as session:
            expired = QueueRepository(session).expire_stale(cutoff, expired_at=now)

        if expired:
            logger.info(
                f"Expired {expired} stale queue items",
                extra={"event": "queue.expired", "count": expired},
            )
        return expired

    # ------------------------------------------------------------------
    # Phase 2: batch consolidation
    # ------------------------------------------------------------------

    def consolidate_batches(self) -> BatchStats:
        """
        Merge each ready batch group into a single pending digest.

        A group either ends with every member sent and one digest inserted,
        or with nothing changed; failed groups are retried next cycle.

        Returns:
            BatchStats for this pass

        Raises:
            PersistenceError: If ready batches cannot be fetched
        """
        stats = BatchStats()
        now = self.clock()

        with get_session() as session:
            ready = QueueRepository(session).fetch_ready_batches(
                now, limit=self.config.consolidation_page_size
            )

        if not ready:
            return stats

        for (batch_key, _, _), members in group_batches(ready).items():
            with log_context(batch_key=batch_key):
                self._consolidate_group(members, stats)

        return stats

    def _consolidate_group(self, members: List[QueueItem], stats: BatchStats) -> None:
        try:
            now = self.clock()
            digest = self._build_digest(members, now)
            with get_session() as session:
                QueueRepository(session).consolidate_group(
                    [member.id for member in members], digest, sent_at=now
                )

        except ConcurrentUpdateError as e:
            stats.groups_conflicted += 1
            logger.warning(
                f"Batch group changed by another processor, rolled back: {e}",
                extra={
                    "event": "queue.batch.conflict",
                    "member_count": len(members),
                    "members_updated": e.affected,
                },
            )
            return
        except Exception as e:
            stats.groups_failed += 1
            logger.error(
                f"Failed to consolidate batch group: {e}",
                extra={
                    "event": "queue.batch.failed",
                    "member_count": len(members),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            return

        stats.groups_consolidated += 1
        stats.members_consolidated += len(members)
        logger.info(
            f"Consolidated {len(members)} batched items into one digest",
            extra={
                "event": "queue.batch.consolidated",
                "member_count": len(members),
                "digest_id": digest.id,
            },
        )

    def _build_digest(self, members: List[QueueItem], now) -> QueueItem:
        """Render the digest for a group and build its queue item."""
        first = members[0]
        payloads = [self._digest_entry(member) for member in members]

        body = self.renderer.render_digest(first.event_type, payloads, total_count=len(members))

        return QueueItem(
            id=uuid.uuid4().hex,
            user_id=first.user_id,
            to_email=first.to_email,
            subject=build_digest_subject(first.event_type, len(members), self.registry),
            html_body=body,
            status=QueueStatus.PENDING,
            event_type=first.event_type,
            scheduled_for=now,
            attempts=0,
            max_attempts=self.config.max_attempts,
            created_at=now,
        )

    @staticmethod
    def _digest_entry(item: QueueItem) -> Dict[str, Any]:
        # Items enqueued without template data still get a line in the digest
        if item.payload:
            return dict(item.payload)
        return {"title": item.subject}

    # ------------------------------------------------------------------
    # Phase 3: delivery
    # ------------------------------------------------------------------

    def deliver_pending(self) -> DeliveryStats:
        """
        Claim and deliver due pending items, oldest first.

        Returns:
            DeliveryStats for this pass

        Raises:
            PersistenceError: If the store is unavailable
        """
        stats = DeliveryStats()
        now = self.clock()

        with get_session() as session:
            due = QueueRepository(session).fetch_due_pending(
                now, limit=self.config.delivery_batch_size
            )

        for item in due:
            with log_context(queue_item_id=item.id):
                self._deliver(item, stats)

        return stats

    def _deliver(self, item: QueueItem, stats: DeliveryStats) -> None:
        with get_session() as session:
            claimed = QueueRepository(session).claim(item.id)

        if not claimed:
            stats.claims_lost += 1
            logger.info(
                "Queue item already claimed elsewhere, skipping",
                extra={"event": "queue.item.claim_lost"},
            )
            return

        stats.claimed += 1
        logger.debug(
            "Queue item claimed",
            extra={"event": "queue.item.claimed", "attempt": item.attempts + 1},
        )

        try:
            send_result = self.transport.send(item.to_email, item.subject, item.html_body)
        except TransportError as e:
            self._record_failure(item, str(e), stats)
            return
        except Exception as e:
            logger.error(
                f"Unexpected error from mail transport: {e}",
                extra={"event": "queue.item.transport_error", "error_type": type(e).__name__},
                exc_info=True,
            )
            self._record_failure(item, f"{type(e).__name__}: {e}", stats)
            return

        sent_at = self.clock()
        try:
            with get_session() as session:
                recorded = QueueRepository(session).mark_delivered(
                    item.id, send_result.provider_message_id, sent_at=sent_at
                )
        except PersistenceError as e:
            # The row stays in processing, which no later cycle touches
            logger.error(
                f"Queue item {item.id} was delivered but could not be marked sent: {e}",
                extra={
                    "event": "queue.item.mark_sent_failed",
                    "provider_message_id": send_result.provider_message_id,
                    "to_email": item.to_email,
                },
            )
            raise PersistenceError(
                f"Queue item {item.id} delivered (provider message id "
                f"{send_result.provider_message_id}) but left in processing: {e}"
            ) from e

        if not recorded:
            stats.sent_unrecorded += 1
            logger.warning(
                f"Queue item {item.id} was delivered but had already left processing",
                extra={
                    "event": "queue.item.sent_unrecorded",
                    "provider_message_id": send_result.provider_message_id,
                    "attempt": item.attempts + 1,
                },
            )
        else:
            stats.sent += 1
            logger.info(
                "Queue item sent",
                extra={
                    "event": "queue.item.sent",
                    "provider_message_id": send_result.provider_message_id,
                    "attempt": item.attempts + 1,
                },
            )

        if item.notification_id:
            self._acknowledge(item.notification_id, sent_at, send_result.provider_message_id)

    def _record_failure(self, item: QueueItem, error: str, stats: DeliveryStats) -> None:
        try:
            with get_session() as session:
                status = QueueRepository(session).record_failure(item, error)
        except ConcurrentUpdateError as e:
            logger.warning(
                f"Could not record delivery failure: {e}",
                extra={"event": "queue.item.failure_lost"},
            )
            return

        attempts = item.attempts + 1
        if status == QueueStatus.FAILED:
            stats.failed += 1
            logger.error(
                f"Queue item failed permanently after {attempts} attempts: {error}",
                extra={
                    "event": "queue.item.failed",
                    "attempts": attempts,
                    "max_attempts": item.max_attempts,
                },
            )
        else:
            stats.retried += 1
            logger.warning(
                f"Delivery attempt {attempts} of {item.max_attempts} failed, will retry: {error}",
                extra={
                    "event": "queue.item.retry_scheduled",
                    "attempts": attempts,
                    "max_attempts": item.max_attempts,
                },
            )

    def _acknowledge(self, notification_id: str, sent_at, message_id: Optional[str]) -> None:
        """Record delivery on the linked notification. Failure leaves the item sent."""
        try:
            with get_session() as session:
                found = NotificationRepository(session).mark_email_sent(
                    notification_id, sent_at=sent_at, message_id=message_id
                )
        except PersistenceError as e:
            logger.warning(
                f"Failed to record delivery on notification {notification_id}: {e}",
                extra={"event": "queue.item.ack_failed", "notification_id": notification_id},
            )
            return

        if not found:
            logger.debug(
                f"Linked notification {notification_id} not found",
                extra={"event": "queue.item.ack_missing", "notification_id": notification_id},
            )
