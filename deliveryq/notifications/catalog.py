"""Event catalog: every notification type the service knows about.

The registry is built once at import time and exposed read-only. It maps each
event type to its category, email template, default email preference,
batching policy and subject line. Unknown event types fall back to the
``system`` category, the ``generic`` template and the notification title as
subject.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping, Optional

CATEGORIES = ("tasks", "payments", "messages", "reviews", "disputes", "system")

DEFAULT_CATEGORY = "system"
DEFAULT_TEMPLATE = "generic"
DEFAULT_DIGEST_TEMPLATE = "digest"
DEFAULT_BATCH_WINDOW_SECONDS = 300
DEFAULT_DIGEST_SUBJECT = "You have {count} new notifications"


@dataclass(frozen=True)
class SubjectFormat:
    """Subject line built from one metadata field.

    ``text`` contains a ``{value}`` placeholder filled with ``metadata[field]``,
    or ``default`` when the field is missing or empty.
    """

    text: str
    field: Optional[str] = None
    default: str = ""

    def render(self, metadata: Mapping[str, Any]) -> str:
        if self.field is None:
            return self.text
        value = metadata.get(self.field) or self.default
        return self.text.format(value=value)


@dataclass(frozen=True)
class EventType:
    """Catalog entry for one notification type."""

    name: str
    category: str
    template: str = DEFAULT_TEMPLATE
    default_email: bool = True
    batchable: bool = False
    batch_window_seconds: int = DEFAULT_BATCH_WINDOW_SECONDS
    subject: Optional[SubjectFormat] = None
    digest_template: str = DEFAULT_DIGEST_TEMPLATE
    digest_subject: str = DEFAULT_DIGEST_SUBJECT


def _build_registry(*entries: EventType) -> Mapping[str, EventType]:
    registry = {}
    for entry in entries:
        if entry.category not in CATEGORIES:
            raise ValueError(f"Unknown category '{entry.category}' for event type '{entry.name}'")
        if entry.name in registry:
            raise ValueError(f"Duplicate event type '{entry.name}'")
        registry[entry.name] = entry
    return MappingProxyType(registry)


EVENT_TYPES: Mapping[str, EventType] = _build_registry(
    # Tasks
    EventType("task_match", "tasks", "task_match",
              subject=SubjectFormat("New task match: {value}", "title", "New Task")),
    EventType("task_assigned", "tasks", "task_accepted",
              subject=SubjectFormat("You've been assigned: {value}", "title", "New Task")),
    EventType("task_offered", "tasks", "task_accepted",
              subject=SubjectFormat("New task offer: {value}", "title", "New Task")),
    EventType("task_accepted", "tasks", "task_accepted",
              subject=SubjectFormat("Task accepted: {value}", "title", "Your Task")),
    EventType("task_declined", "tasks", default_email=False),
    EventType("task_cancelled", "tasks"),
    EventType("task_expired", "tasks", default_email=False),
    EventType("task_offer_expired", "tasks", default_email=False),
    EventType("task_auto_hidden", "tasks", default_email=False),
    EventType("task_completed", "tasks", "task_completed",
              subject=SubjectFormat("Task completed: {value}", "title", "Your Task")),
    # Proofs
    EventType("proof_submitted", "tasks"),
    EventType("proof_approved", "tasks", "task_completed",
              subject=SubjectFormat("Work approved: {value}", "title", "Your Task")),
    EventType("proof_rejected", "tasks"),
    # Payments
    EventType("payment_released", "payments", "payment_received",
              subject=SubjectFormat("Payment received: {value}", "title", "Your Task")),
    EventType("payment_received", "payments", "payment_received",
              subject=SubjectFormat("Payment received: {value}", "title", "Your Task")),
    EventType("payment_pending", "payments"),
    EventType("payment_failed", "payments"),
    EventType("transfer_failed", "payments"),
    EventType("payout_failed", "payments"),
    EventType("payout_completed", "payments", "payment_received",
              subject=SubjectFormat("Payout completed")),
    EventType("deposit_confirmed", "payments"),
    # Messages
    EventType("new_message", "messages", "new_message",
              batchable=True,
              batch_window_seconds=300,
              subject=SubjectFormat("New message from {value}", "senderName", "someone"),
              digest_template="new_message",
              digest_subject="You have {count} new messages"),
    # Reviews
    EventType("rating_received", "reviews"),
    EventType("rating_visible", "reviews", default_email=False),
    EventType("review_reminder", "reviews", "review_reminder",
              subject=SubjectFormat("Reminder: Review {value}", "title", "a task")),
    # Disputes
    EventType("dispute", "disputes", "dispute_opened",
              subject=SubjectFormat("Dispute update: {value}", "title", "a task")),
    EventType("dispute_opened", "disputes", "dispute_opened",
              subject=SubjectFormat("Dispute opened: {value}", "title", "a task")),
    EventType("dispute_filed", "disputes", "dispute_opened",
              subject=SubjectFormat("Dispute filed: {value}", "title", "a task")),
    EventType("dispute_created", "disputes"),
    EventType("dispute_resolved", "disputes"),
    # System / admin
    EventType("critical_feedback", "system", default_email=False),
    EventType("report_submitted", "system", default_email=False),
    EventType("new_task_report", "system", default_email=False),
    EventType("agent_error", "system", default_email=False),
)


def get_event_type(
    name: Optional[str], registry: Mapping[str, EventType] = EVENT_TYPES
) -> Optional[EventType]:
    if name is None:
        return None
    return registry.get(name)


def get_category(name: Optional[str], registry: Mapping[str, EventType] = EVENT_TYPES) -> str:
    entry = get_event_type(name, registry)
    return entry.category if entry else DEFAULT_CATEGORY


def get_template_name(
    name: Optional[str], registry: Mapping[str, EventType] = EVENT_TYPES
) -> str:
    entry = get_event_type(name, registry)
    return entry.template if entry else DEFAULT_TEMPLATE


def get_digest_template_name(
    name: Optional[str], registry: Mapping[str, EventType] = EVENT_TYPES
) -> str:
    entry = get_event_type(name, registry)
    return entry.digest_template if entry else DEFAULT_DIGEST_TEMPLATE


def default_email_enabled(
    name: Optional[str], registry: Mapping[str, EventType] = EVENT_TYPES
) -> bool:
    """Unknown event types do not send email unless the caller opts in."""
    entry = get_event_type(name, registry)
    return entry.default_email if entry else False


def build_subject(
    name: Optional[str],
    title: str,
    metadata: Optional[Mapping[str, Any]] = None,
    registry: Mapping[str, EventType] = EVENT_TYPES,
) -> str:
    """Subject line for a single notification. Falls back to the title."""
    entry = get_event_type(name, registry)
    if entry is None or entry.subject is None or metadata is None:
        return title
    return entry.subject.render(metadata)


def build_digest_subject(
    name: Optional[str], count: int, registry: Mapping[str, EventType] = EVENT_TYPES
) -> str:
    entry = get_event_type(name, registry)
    digest_subject = entry.digest_subject if entry else DEFAULT_DIGEST_SUBJECT
    return digest_subject.format(count=count)


def is_batchable(name: Optional[str], registry: Mapping[str, EventType] = EVENT_TYPES) -> bool:
    entry = get_event_type(name, registry)
    return bool(entry and entry.batchable)


def get_batch_window(name: Optional[str], registry: Mapping[str, EventType] = EVENT_TYPES) -> int:
    """Batch window in seconds for an event type."""
    entry = get_event_type(name, registry)
    return entry.batch_window_seconds if entry else DEFAULT_BATCH_WINDOW_SECONDS
