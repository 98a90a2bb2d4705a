"""Delivery queue: enqueue operation and cycle processor."""

from .enqueue import EmailQueue
from .exceptions import EnqueueError, QueueError
from .models import BatchStats, CycleResult, DeliveryStats
from .processor import QueueProcessor, group_batches

__all__ = [
    "EmailQueue",
    "QueueProcessor",
    "group_batches",
    "CycleResult",
    "BatchStats",
    "DeliveryStats",
    "QueueError",
    "EnqueueError",
]
