"""Persistence layer for the delivery queue.

Public API:
    # Database initialization and session management
    - init_database(database_url: str) -> None
    - get_session() -> ContextManager[Session]
    - close_database() -> None
    - get_engine() -> Engine

    # Repository classes
    - QueueRepository: queue rows, claims and conditional status updates
    - UnsubscribeTokenRepository: unsubscribe token lookup and creation
    - NotificationRepository: notification records and delivery acknowledgment

Example usage:
    >>> from deliveryq.persistence import init_database, get_session, QueueRepository
    >>>
    >>> init_database("sqlite:///./data/delivery_queue.db")
    >>>
    >>> with get_session() as session:
    ...     counts = QueueRepository(session).count_by_status()
"""

from .database import close_database, get_engine, get_session, init_database
from .exceptions import (
    ConcurrentUpdateError,
    DatabaseConnectionError,
    DataIntegrityError,
    PersistenceError,
)
from .repositories import NotificationRepository, QueueRepository, UnsubscribeTokenRepository
from .schema import NotificationModel, QueueItemModel, UnsubscribeTokenModel, create_schema

__all__ = [
    # Database functions
    "init_database",
    "get_session",
    "close_database",
    "get_engine",
    "create_schema",
    # Repositories
    "QueueRepository",
    "UnsubscribeTokenRepository",
    "NotificationRepository",
    # ORM models
    "QueueItemModel",
    "UnsubscribeTokenModel",
    "NotificationModel",
    # Exceptions
    "PersistenceError",
    "DatabaseConnectionError",
    "DataIntegrityError",
    "ConcurrentUpdateError",
]
