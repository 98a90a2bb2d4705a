"""Persistence layer exceptions.

All persistence exceptions inherit from PersistenceError. The queue processor
treats any PersistenceError escaping a cycle phase as "store unavailable" and
aborts the cycle.
"""


class PersistenceError(Exception):
    """Base exception for all persistence layer errors."""

    pass


class DatabaseConnectionError(PersistenceError):
    """Raised when database connection or initialization fails.

    Examples:
    - Invalid database URL format
    - Database file not accessible
    - get_session() called before init_database()
    """

    pass


class DataIntegrityError(PersistenceError):
    """Raised when a database constraint is violated (e.g. duplicate token)."""

    pass


class ConcurrentUpdateError(PersistenceError):
    """Raised when a conditional write affected fewer rows than required.

    Signals that another writer changed the rows first. The surrounding
    transaction must be rolled back.
    """

    def __init__(self, message: str, expected: int, affected: int) -> None:
        super().__init__(message)
        self.expected = expected
        self.affected = affected
