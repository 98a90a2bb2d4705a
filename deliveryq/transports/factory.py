"""Factory function for instantiating the configured mail transport."""

from email.utils import formataddr
from typing import List

from deliveryq.config.environment import EnvironmentConfig
from deliveryq.config.exceptions import ConfigurationError
from deliveryq.config.models import EmailConfig, TransportType
from deliveryq.logging import get_logger

from .base import MailTransport
from .exceptions import TransportConfigurationError
from .http_api import HTTPTransport
from .log import LogTransport
from .smtp import SMTPTransport

logger = get_logger(__name__, component="transport")


def get_transport(env_config: EnvironmentConfig, email_config: EmailConfig) -> MailTransport:
    """Create the transport selected by ``email.transport``.

    Transport-specific environment requirements are checked here: SMTP needs
    SMTP_HOST and SMTP_PORT, the HTTP transport needs MAIL_API_KEY. The log
    transport needs nothing.

    Args:
        env_config: Environment configuration with credentials and endpoints
        email_config: Email section of the application config

    Returns:
        Instantiated transport

    Raises:
        ConfigurationError: If required settings are missing or invalid

    Example:
        >>> transport = get_transport(load_environment_config(), app_config.email)
        >>> transport.send("user@example.com", "Hello", "<p>Hi</p>")
    """
    transport_type = TransportType(email_config.transport)
    sender = formataddr((email_config.sender_name, env_config.sender_email()))

    _check_requirements(transport_type, env_config)

    logger.debug(
        "Creating mail transport",
        extra={"event": "transport.created", "transport": transport_type.value},
    )

    try:
        if transport_type == TransportType.SMTP:
            return SMTPTransport(
                host=env_config.smtp_host,
                port=env_config.smtp_port,
                sender=sender,
                username=env_config.smtp_user,
                password=env_config.smtp_pass,
                reply_to=email_config.reply_to,
                use_tls=email_config.use_tls,
                timeout=email_config.timeout_seconds,
            )
        if transport_type == TransportType.HTTP:
            return HTTPTransport(
                api_url=env_config.mail_api_url,
                api_key=env_config.mail_api_key,
                sender=sender,
                reply_to=email_config.reply_to,
                timeout=email_config.timeout_seconds,
            )
        return LogTransport(
            sender=sender,
            reply_to=email_config.reply_to,
            timeout=email_config.timeout_seconds,
        )
    except TransportConfigurationError as e:
        raise ConfigurationError(
            f"Failed to create {transport_type.value} transport: {e}"
        ) from e


def _check_requirements(transport_type: TransportType, env_config: EnvironmentConfig) -> None:
    errors: List[str] = []
    suggestions: List[str] = []

    if transport_type == TransportType.SMTP:
        if not env_config.smtp_host:
            errors.append("SMTP_HOST is required for the smtp transport")
        if not env_config.smtp_port:
            errors.append("SMTP_PORT is required for the smtp transport")
        suggestions.append("Set SMTP_HOST and SMTP_PORT in your .env file")
    elif transport_type == TransportType.HTTP:
        if not env_config.mail_api_key:
            errors.append("MAIL_API_KEY is required for the http transport")
        suggestions.append("Set MAIL_API_KEY (and optionally MAIL_API_URL) in your .env file")

    if errors:
        suggestions.append("Use 'transport: log' under 'email' to run without a mail provider")
        raise ConfigurationError(
            "Mail transport configuration is incomplete",
            errors=errors,
            suggestions=suggestions,
        )
