"""Environment variable loading and validation.

Secrets and deployment-specific endpoints come from the environment (a .env
file is loaded by the CLI through python-dotenv). Which of them are required
depends on the configured transport; that check happens in
deliveryq.transports.factory so the queue can run against the log transport
without any mail credentials.
"""

import os
from typing import List, Optional

from email_validator import EmailNotValidError, validate_email

from .exceptions import ConfigurationError

DEFAULT_DATABASE_URL = "sqlite:///./data/delivery_queue.db"
DEFAULT_MAIL_API_URL = "https://api.resend.com"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class EnvironmentConfig:
    """Environment variable configuration holder."""

    def __init__(
        self,
        database_url: Optional[str] = None,
        smtp_host: Optional[str] = None,
        smtp_port: Optional[int] = None,
        smtp_user: Optional[str] = None,
        smtp_pass: Optional[str] = None,
        mail_from: Optional[str] = None,
        mail_api_url: Optional[str] = None,
        mail_api_key: Optional[str] = None,
        log_level: Optional[str] = None,
    ):
        self.database_url = database_url or DEFAULT_DATABASE_URL
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_pass = smtp_pass
        self.mail_from = mail_from
        self.mail_api_url = (mail_api_url or DEFAULT_MAIL_API_URL).rstrip("/")
        self.mail_api_key = mail_api_key
        self.log_level = log_level

    def sender_email(self) -> str:
        """Address used in the From header.

        Falls back to the SMTP user, then to noreply@<smtp host>.
        """
        if self.mail_from:
            return self.mail_from
        if self.smtp_user:
            return self.smtp_user
        return f"noreply@{self.smtp_host or 'localhost'}"


def load_environment_config() -> EnvironmentConfig:
    """
    Load and validate environment variables.

    All variables are optional at this stage:
    - DATABASE_URL: SQLAlchemy URL (default: sqlite:///./data/delivery_queue.db)
    - SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS: SMTP transport settings
    - MAIL_FROM: Sender address for outgoing mail
    - MAIL_API_URL, MAIL_API_KEY: HTTP provider transport settings
    - LOG_LEVEL: Override log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        EnvironmentConfig with validated values

    Raises:
        ConfigurationError: If any provided variable is malformed
    """
    errors: List[str] = []

    smtp_port_str = os.getenv("SMTP_PORT")
    smtp_user = os.getenv("SMTP_USER")
    smtp_pass = os.getenv("SMTP_PASS")
    mail_from = os.getenv("MAIL_FROM")
    log_level = os.getenv("LOG_LEVEL")

    smtp_port = None
    if smtp_port_str:
        try:
            smtp_port = int(smtp_port_str)
            if not 1 <= smtp_port <= 65535:
                errors.append(f"Invalid SMTP_PORT: {smtp_port}. Must be between 1 and 65535.")
        except ValueError:
            errors.append(f"Invalid SMTP_PORT: '{smtp_port_str}'. Must be a valid integer.")

    if mail_from:
        try:
            mail_from = validate_email(mail_from, check_deliverability=False).normalized
        except EmailNotValidError as e:
            errors.append(f"Invalid email address in MAIL_FROM: '{mail_from}' - {e}")

    if log_level and log_level.upper() not in VALID_LOG_LEVELS:
        errors.append(
            f"Invalid LOG_LEVEL: '{log_level}'. Must be one of: {', '.join(VALID_LOG_LEVELS)}"
        )

    if smtp_user and not smtp_pass:
        errors.append("SMTP_USER is set but SMTP_PASS is not. Both must be set for authentication.")
    elif smtp_pass and not smtp_user:
        errors.append("SMTP_PASS is set but SMTP_USER is not. Both must be set for authentication.")

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Copy .env.example to .env and fill in your credentials",
                "Verify SMTP_PORT is a number between 1 and 65535",
                "Check that MAIL_FROM is a valid email address",
            ],
        )

    return EnvironmentConfig(
        database_url=os.getenv("DATABASE_URL"),
        smtp_host=os.getenv("SMTP_HOST"),
        smtp_port=smtp_port,
        smtp_user=smtp_user,
        smtp_pass=smtp_pass,
        mail_from=mail_from,
        mail_api_url=os.getenv("MAIL_API_URL"),
        mail_api_key=os.getenv("MAIL_API_KEY"),
        log_level=log_level.upper() if log_level else None,
    )
