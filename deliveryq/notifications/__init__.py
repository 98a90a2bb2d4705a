"""Notification catalog, rendering, unsubscribe tokens and the notify facade."""

from .catalog import EVENT_TYPES, EventType, SubjectFormat
from .models import NotificationError, NotificationTemplateError, NotifyResult
from .service import NotificationService
from .templates import TemplateRenderer
from .unsubscribe import UnsubscribeTokenManager

__all__ = [
    "EVENT_TYPES",
    "EventType",
    "SubjectFormat",
    "TemplateRenderer",
    "UnsubscribeTokenManager",
    "NotificationService",
    "NotifyResult",
    "NotificationError",
    "NotificationTemplateError",
]
