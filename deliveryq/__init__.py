"""Notification delivery queue: batching, retries and expiry for notification email."""

__version__ = "0.1.0"
