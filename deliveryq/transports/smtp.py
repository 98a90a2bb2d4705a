"""SMTP mail transport.

A thin wrapper around smtplib with support for STARTTLS, implicit TLS on
port 465, optional authentication and a connection timeout. The Message-ID
header is generated locally and doubles as the provider message id.
"""

import smtplib
import ssl
from email.message import EmailMessage
from email.utils import make_msgid, parseaddr
from typing import Callable, Optional

from deliveryq.logging import get_logger

from .base import MailTransport, SendResult
from .exceptions import TransportConfigurationError, TransportError, TransportTimeoutError

logger = get_logger(__name__, component="transport")

IMPLICIT_TLS_PORT = 465


class SMTPTransport(MailTransport):
    """Send mail through an SMTP relay.

    The connection factories are injectable so tests can substitute mocks for
    smtplib.SMTP and smtplib.SMTP_SSL.
    """

    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        reply_to: Optional[str] = None,
        use_tls: bool = True,
        timeout: int = 30,
        smtp_factory: Optional[Callable] = None,
        smtp_ssl_factory: Optional[Callable] = None,
    ) -> None:
        super().__init__(sender=sender, reply_to=reply_to, timeout=timeout)

        if not host:
            raise TransportConfigurationError("SMTP host cannot be empty")
        if not port:
            raise TransportConfigurationError("SMTP port cannot be empty")

        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.smtp_factory = smtp_factory or smtplib.SMTP
        self.smtp_ssl_factory = smtp_ssl_factory or smtplib.SMTP_SSL

    def build_message(self, to: str, subject: str, body: str) -> EmailMessage:
        """Build the MIME message for one send, including a fresh Message-ID."""
        sender_domain = parseaddr(self.sender)[1].rpartition("@")[2] or None

        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message["Message-ID"] = make_msgid(domain=sender_domain)
        if self.reply_to:
            message["Reply-To"] = self.reply_to
        message.set_content(body, subtype="html")
        return message

    def send(self, to: str, subject: str, body: str) -> SendResult:
        recipient = self._validate_recipient(to)
        message = self.build_message(recipient, subject, body)

        smtp = None
        try:
            smtp = self._connect()

            if self.username and self.password:
                smtp.login(self.username, self.password)

            smtp.send_message(message)

        except smtplib.SMTPException as e:
            logger.warning(
                f"SMTP error sending to {recipient}: {e}",
                extra={"event": "transport.send.failed", "transport": self.name},
            )
            raise TransportError(f"SMTP error during message delivery: {e}") from e
        except TimeoutError as e:
            logger.warning(
                f"SMTP connection to {self.host}:{self.port} timed out after {self.timeout}s",
                extra={"event": "transport.send.failed", "transport": self.name},
            )
            raise TransportTimeoutError(
                f"SMTP connection timed out after {self.timeout} seconds",
                url=f"smtp://{self.host}:{self.port}",
            ) from e
        except OSError as e:
            logger.warning(
                f"Network error sending to {recipient}: {e}",
                extra={"event": "transport.send.failed", "transport": self.name},
            )
            raise TransportError(f"Network error during SMTP connection: {e}") from e
        finally:
            if smtp is not None:
                try:
                    smtp.quit()
                except (smtplib.SMTPException, OSError) as e:
                    logger.warning(f"Error closing SMTP connection: {e}")

        message_id = message["Message-ID"]
        logger.debug(
            f"Message sent to {recipient}",
            extra={
                "event": "transport.send.succeeded",
                "transport": self.name,
                "provider_message_id": message_id,
            },
        )
        return SendResult(provider_message_id=message_id)

    def _connect(self):
        if self.port == IMPLICIT_TLS_PORT:
            logger.debug(f"Connecting to {self.host}:{self.port} with implicit TLS")
            return self.smtp_ssl_factory(
                self.host,
                self.port,
                context=ssl.create_default_context(),
                timeout=self.timeout,
            )

        logger.debug(f"Connecting to {self.host}:{self.port}")
        smtp = self.smtp_factory(self.host, self.port, timeout=self.timeout)
        if self.use_tls:
            smtp.starttls(context=ssl.create_default_context())
        return smtp
