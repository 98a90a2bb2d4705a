"""Result models for queue processing cycles."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class BatchStats:
    """Outcome of one consolidation pass.

    Attributes:
        groups_consolidated: Digests created
        members_consolidated: Batched items subsumed into those digests
        groups_failed: Groups rolled back because rendering or the store failed
        groups_conflicted: Groups rolled back because another processor changed them
    """

    groups_consolidated: int = 0
    members_consolidated: int = 0
    groups_failed: int = 0
    groups_conflicted: int = 0


@dataclass
class DeliveryStats:
    """Outcome of one delivery pass.

    Attributes:
        claimed: Items this processor moved to processing
        sent: Items delivered
        retried: Items returned to pending after a failed attempt
        failed: Items that exhausted their attempts
        claims_lost: Items another processor claimed first
        sent_unrecorded: Items delivered whose row had already left processing
    """

    claimed: int = 0
    sent: int = 0
    retried: int = 0
    failed: int = 0
    claims_lost: int = 0
    sent_unrecorded: int = 0


@dataclass
class CycleResult:
    """
    Aggregate results from one processing cycle.

    Attributes:
        cycle_id: Identifier shared by every log record of the cycle
        started_at: UTC timestamp when the cycle began
        finished_at: UTC timestamp when the cycle ended
        skipped: Another cycle was already running; nothing was done
        aborted: The store became unavailable and the cycle stopped early
        error: Description of the abort cause
        expired: Items moved to expired by the sweep
        batches: Consolidation statistics
        delivery: Delivery statistics
    """

    cycle_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    skipped: bool = False
    aborted: bool = False
    error: Optional[str] = None
    expired: int = 0
    batches: BatchStats = field(default_factory=BatchStats)
    delivery: DeliveryStats = field(default_factory=DeliveryStats)

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def ok(self) -> bool:
        """True when the cycle ran to completion."""
        return not (self.skipped or self.aborted)

    def summary(self) -> Dict[str, Any]:
        """Flat counters for the cycle-completed log record."""
        return {
            "duration_ms": int(self.duration_seconds * 1000),
            "expired": self.expired,
            "digests_created": self.batches.groups_consolidated,
            "batch_members_consolidated": self.batches.members_consolidated,
            "batch_groups_failed": self.batches.groups_failed,
            "batch_groups_conflicted": self.batches.groups_conflicted,
            "claimed": self.delivery.claimed,
            "sent": self.delivery.sent,
            "retried": self.delivery.retried,
            "failed": self.delivery.failed,
            "claims_lost": self.delivery.claims_lost,
            "sent_unrecorded": self.delivery.sent_unrecorded,
            "aborted": self.aborted,
        }
