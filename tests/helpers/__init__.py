"""Test helper utilities for delivery queue tests."""

from .clock import FakeClock
from .factories import all_items, insert_item, load_item, make_queue_item
from .transport import RecordingTransport, SentMessage

__all__ = [
    "FakeClock",
    "RecordingTransport",
    "SentMessage",
    "make_queue_item",
    "insert_item",
    "load_item",
    "all_items",
]
