"""Mail transports for the delivery queue.

Public API:
    - get_transport(env_config, email_config) -> MailTransport
    - MailTransport, SendResult
    - SMTPTransport, HTTPTransport, LogTransport
    - TransportError and its subclasses
"""

from .base import MailTransport, SendResult
from .exceptions import (
    TransportConfigurationError,
    TransportError,
    TransportHTTPError,
    TransportResponseError,
    TransportTimeoutError,
)
from .factory import get_transport
from .http_api import HTTPTransport
from .log import LogTransport
from .smtp import SMTPTransport

__all__ = [
    "get_transport",
    "MailTransport",
    "SendResult",
    "SMTPTransport",
    "HTTPTransport",
    "LogTransport",
    "TransportError",
    "TransportConfigurationError",
    "TransportHTTPError",
    "TransportTimeoutError",
    "TransportResponseError",
]
