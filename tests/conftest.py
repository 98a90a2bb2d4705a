"""Shared pytest fixtures."""

import pytest

from deliveryq.config.models import QueueConfig
from deliveryq.logging.context import clear_log_context
from deliveryq.persistence import close_database, init_database
from deliveryq.queue import EmailQueue, QueueProcessor

from tests.helpers import FakeClock, RecordingTransport

ENV_VARS = (
    "DATABASE_URL",
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USER",
    "SMTP_PASS",
    "MAIL_FROM",
    "MAIL_API_URL",
    "MAIL_API_KEY",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_log_context():
    clear_log_context()
    yield
    clear_log_context()


@pytest.fixture
def database():
    """In-memory SQLite database with the schema created."""
    init_database("sqlite://")
    yield
    close_database()


@pytest.fixture
def file_database(tmp_path):
    """File-backed SQLite database, shared by every thread in the test."""
    init_database(f"sqlite:///{tmp_path / 'queue.db'}")
    yield tmp_path / "queue.db"
    close_database()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every environment variable the service reads."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def smtp_env(clean_env):
    clean_env.setenv("SMTP_HOST", "smtp.example.com")
    clean_env.setenv("SMTP_PORT", "587")
    clean_env.setenv("SMTP_USER", "mailer@example.com")
    clean_env.setenv("SMTP_PASS", "secret123")
    clean_env.setenv("MAIL_FROM", "noreply@example.com")
    return clean_env


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue_config():
    return QueueConfig()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def email_queue(database, clock, queue_config):
    return EmailQueue(queue_config=queue_config, clock=clock)


@pytest.fixture
def processor(database, transport, clock, queue_config):
    return QueueProcessor(transport=transport, queue_config=queue_config, clock=clock)
