"""Base mail transport class.

A transport performs the network send for one message and reports the
provider's message id. Transports know nothing about the queue: retries,
attempt counting and status changes belong to the queue processor.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from email_validator import EmailNotValidError, validate_email

from .exceptions import TransportConfigurationError, TransportError


@dataclass(frozen=True)
class SendResult:
    """Outcome of a successful send.

    Attributes:
        provider_message_id: Id assigned by the provider, None for dry runs
    """

    provider_message_id: Optional[str]


class MailTransport(ABC):
    """Base class for all mail transports.

    Attributes:
        sender: Formatted From address, e.g. "Notifications <noreply@example.com>"
        reply_to: Optional Reply-To address
        timeout: Network timeout in seconds for a single send
    """

    name = "base"

    def __init__(self, sender: str, reply_to: Optional[str] = None, timeout: int = 30) -> None:
        if not sender or not sender.strip():
            raise TransportConfigurationError("sender cannot be empty")
        if timeout <= 0:
            raise TransportConfigurationError(f"timeout must be positive, got: {timeout}")

        self.sender = sender.strip()
        self.reply_to = reply_to
        self.timeout = timeout

    @abstractmethod
    def send(self, to: str, subject: str, body: str) -> SendResult:
        """Send one HTML message.

        Args:
            to: Recipient address
            subject: Subject line
            body: Rendered HTML body

        Returns:
            SendResult with the provider message id

        Raises:
            TransportError: If the message could not be handed to the provider.
            Its subclasses indicate specific error types:
            - TransportHTTPError: provider returned 4xx/5xx or the request failed
            - TransportTimeoutError: send exceeded the timeout
            - TransportResponseError: provider response was unusable
        """

    def _validate_recipient(self, to: str) -> str:
        """Normalize the recipient address before any network call.

        Raises:
            TransportError: If the address is not a valid email address
        """
        try:
            return validate_email(to, check_deliverability=False).normalized
        except EmailNotValidError as e:
            raise TransportError(f"Invalid recipient address '{to}': {e}") from e
