"""HTTP mail provider transport.

Posts one JSON message per send to ``{api_url}/emails`` with a Bearer API
key, the request shape used by Resend-style provider APIs:

    {"from": ..., "to": [...], "subject": ..., "html": ..., "reply_to": ...}

The provider answers with ``{"id": "<message id>"}``.
"""

from typing import Any, Dict, Optional

import requests

from deliveryq.logging import get_logger

from .base import MailTransport, SendResult
from .exceptions import (
    TransportConfigurationError,
    TransportHTTPError,
    TransportResponseError,
    TransportTimeoutError,
)

logger = get_logger(__name__, component="transport")

USER_AGENT = "NotificationDeliveryQueue/1.0"


class HTTPTransport(MailTransport):
    """Send mail through a provider's HTTP API."""

    name = "http"

    def __init__(
        self,
        api_url: str,
        api_key: str,
        sender: str,
        reply_to: Optional[str] = None,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ) -> None:
        super().__init__(sender=sender, reply_to=reply_to, timeout=timeout)

        if not api_url or not api_url.startswith(("http://", "https://")):
            raise TransportConfigurationError(f"Invalid mail API URL: '{api_url}'")
        if not api_key:
            raise TransportConfigurationError("Mail API key cannot be empty")

        self.endpoint = f"{api_url.rstrip('/')}/emails"

        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {api_key}",
                "User-Agent": USER_AGENT,
            }
        )

    def send(self, to: str, subject: str, body: str) -> SendResult:
        recipient = self._validate_recipient(to)

        payload: Dict[str, Any] = {
            "from": self.sender,
            "to": [recipient],
            "subject": subject,
            "html": body,
        }
        if self.reply_to:
            payload["reply_to"] = self.reply_to

        data = self._post(payload)

        message_id = data.get("id") if isinstance(data, dict) else None
        if not message_id:
            raise TransportResponseError(
                f"Mail provider response from {self.endpoint} did not include a message id"
            )

        logger.debug(
            f"Message sent to {recipient}",
            extra={
                "event": "transport.send.succeeded",
                "transport": self.name,
                "provider_message_id": message_id,
            },
        )
        return SendResult(provider_message_id=str(message_id))

    def _post(self, payload: Dict[str, Any]) -> Any:
        """POST the payload and return the decoded JSON body.

        Raises:
            TransportHTTPError: On 4xx or 5xx status or connection failure
            TransportTimeoutError: On request timeout
            TransportResponseError: On invalid JSON
        """
        url = self.endpoint
        try:
            logger.debug(
                f"HTTP POST request to {url}",
                extra={"event": "transport.send.request", "url": url, "timeout": self.timeout},
            )
            response = self._session.post(url, json=payload, timeout=self.timeout)

        except requests.exceptions.Timeout as e:
            logger.warning(
                f"Request to {url} timed out after {self.timeout} seconds",
                extra={"event": "transport.send.failed", "error_type": "Timeout", "url": url},
            )
            raise TransportTimeoutError(
                f"Request to {url} timed out after {self.timeout} seconds", url=url
            ) from e
        except requests.exceptions.RequestException as e:
            logger.warning(
                f"Request to {url} failed: {e}",
                extra={"event": "transport.send.failed", "error_type": type(e).__name__, "url": url},
            )
            raise TransportHTTPError(f"Request to {url} failed: {e}", status_code=0, url=url) from e

        if response.status_code >= 400:
            logger.warning(
                f"HTTP {response.status_code} error from {url}",
                extra={
                    "event": "transport.send.failed",
                    "status_code": response.status_code,
                    "url": url,
                },
            )
            raise TransportHTTPError(
                f"HTTP {response.status_code}: {response.reason}",
                status_code=response.status_code,
                url=url,
            )

        try:
            return response.json()
        except ValueError as e:
            raise TransportResponseError(f"Failed to parse JSON response from {url}: {e}") from e
