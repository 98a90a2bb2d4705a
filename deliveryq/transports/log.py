"""Dry-run transport that logs instead of sending."""

from deliveryq.logging import get_logger

from .base import MailTransport, SendResult

logger = get_logger(__name__, component="transport")


class LogTransport(MailTransport):
    """Log each message and report success without a provider message id.

    Used when no mail provider is configured so the queue can run end to end
    in development.
    """

    name = "log"

    def send(self, to: str, subject: str, body: str) -> SendResult:
        recipient = self._validate_recipient(to)
        logger.info(
            f"Would send email to {recipient}: {subject}",
            extra={
                "event": "transport.send.dry_run",
                "transport": self.name,
                "to": recipient,
                "subject": subject,
                "body_length": len(body),
            },
        )
        return SendResult(provider_message_id=None)
