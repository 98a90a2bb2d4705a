"""Database connection and session management.

The engine and session factory live at module level and are created once by
init_database(). Every unit of work then runs inside get_session(), which
commits on success and rolls back on any exception.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.orm import Session, sessionmaker

from deliveryq.logging import get_logger

from .exceptions import DatabaseConnectionError

# SQLite busy timeout; the store is shared by the enqueue path and the processor
SQLITE_BUSY_TIMEOUT_SECONDS = 30

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None

logger = get_logger(__name__, component="database")


def init_database(database_url: str, create_tables: bool = True) -> None:
    """Initialize the database connection and create the schema.

    Call once during application startup (and once per test via the
    ``database`` fixture).

    Args:
        database_url: SQLAlchemy URL, e.g. "sqlite:///./data/delivery_queue.db"
        create_tables: Create missing tables and indexes after connecting

    Raises:
        DatabaseConnectionError: If the URL is invalid or the database is
            unreachable
    """
    global _engine, _session_factory

    if not database_url or not isinstance(database_url, str):
        raise DatabaseConnectionError("Database URL must be a non-empty string")

    logger.info(
        "Initializing database",
        extra={"event": "database.initializing", "database_url": _redact_url(database_url)},
    )

    try:
        is_sqlite = database_url.startswith("sqlite")
        if is_sqlite:
            _ensure_sqlite_directory(database_url)

        _engine = create_engine(
            database_url,
            echo=False,
            pool_pre_ping=True,
            connect_args={
                "check_same_thread": False,
                "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
            }
            if is_sqlite
            else {},
        )

        if is_sqlite:
            _configure_sqlite(_engine)

        _validate_connection(_engine)

        _session_factory = sessionmaker(
            bind=_engine,
            autoflush=True,
            expire_on_commit=False,
        )

        if create_tables:
            from .schema import create_schema

            create_schema(_engine)

    except DatabaseConnectionError:
        raise
    except Exception as e:
        error_msg = f"Failed to initialize database: {e}"
        logger.error(error_msg, exc_info=True)
        raise DatabaseConnectionError(error_msg) from e

    logger.info(
        "Database initialized",
        extra={"event": "database.initialised", "database_url": _redact_url(database_url)},
    )


def _ensure_sqlite_directory(database_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    try:
        database = make_url(database_url).database
    except ArgumentError as e:
        raise DatabaseConnectionError(f"Invalid database URL: {e}") from e

    if not database or database == ":memory:":
        return

    parent = Path(database).parent
    if not parent.exists():
        logger.info(f"Creating database directory: {parent}")
        parent.mkdir(parents=True, exist_ok=True)


def _configure_sqlite(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()


def _validate_connection(engine: Engine) -> None:
    """Run a trivial query to prove the database is reachable.

    Raises:
        DatabaseConnectionError: If the test query fails
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        logger.debug("Database connection validated")
    except Exception as e:
        raise DatabaseConnectionError(f"Failed to validate database connection: {e}") from e


def _redact_url(url: str) -> str:
    """Hide the password component of a database URL for logging."""
    if url.startswith("sqlite"):
        return url

    try:
        return make_url(url).render_as_string(hide_password=True)
    except ArgumentError:
        return "<invalid url>"


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Provide a session wrapped in a transaction.

    Commits on clean exit, rolls back on any exception (which is re-raised),
    and always closes the session.

    Raises:
        DatabaseConnectionError: If init_database() has not been called

    Example:
        >>> with get_session() as session:
        ...     repo = QueueRepository(session)
        ...     item = repo.get("3f2a...")
    """
    if _session_factory is None:
        raise DatabaseConnectionError(
            "Database not initialized. Call init_database() before using get_session()"
        )

    session = _session_factory()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.warning(
            f"Database session rolled back: {e}",
            extra={"event": "database.session.rolled_back", "error_type": type(e).__name__},
        )
        raise
    finally:
        session.close()


def get_engine() -> Engine:
    """Return the engine created by init_database().

    Raises:
        DatabaseConnectionError: If the database is not initialized
    """
    if _engine is None:
        raise DatabaseConnectionError(
            "Database not initialized. Call init_database() before using get_engine()"
        )
    return _engine


def close_database() -> None:
    """Dispose of the engine and forget the session factory."""
    global _engine, _session_factory

    if _engine is not None:
        logger.info("Closing database connections", extra={"event": "database.closing"})
        _engine.dispose()
    _engine = None
    _session_factory = None
