"""Unsubscribe token management.

Tokens are scoped to a user and optionally an event type (None means "all
email"). Lookup-before-create keeps one unused token per scope; two racing
callers may still create two tokens, and either token works.
"""

import secrets
import uuid
from typing import Optional

from deliveryq.config.models import UnsubscribeConfig
from deliveryq.domain.models import UnsubscribeToken
from deliveryq.logging import get_logger
from deliveryq.persistence.database import get_session
from deliveryq.persistence.exceptions import PersistenceError
from deliveryq.persistence.repositories import UnsubscribeTokenRepository
from deliveryq.utils.timestamps import Clock, utc_now

logger = get_logger(__name__, component="unsubscribe")

TOKEN_BYTES = 32


class UnsubscribeTokenManager:
    """Issues unsubscribe tokens and formats unsubscribe links."""

    def __init__(self, config: Optional[UnsubscribeConfig] = None, clock: Clock = utc_now):
        self.config = config or UnsubscribeConfig()
        self.clock = clock

    def get_or_create(self, user_id: str, event_type: Optional[str] = None) -> Optional[str]:
        """Return the active token for the scope, creating one if needed.

        Store failures are logged and reported as None so callers can send the
        email without an unsubscribe link.

        Args:
            user_id: Token owner
            event_type: Scope of the token; None for a global unsubscribe

        Returns:
            Token value, or None if the store could not be reached
        """
        try:
            with get_session() as session:
                repo = UnsubscribeTokenRepository(session)

                existing = repo.find_active(user_id, event_type)
                if existing is not None:
                    return existing.token

                token = repo.create(
                    UnsubscribeToken(
                        id=uuid.uuid4().hex,
                        user_id=user_id,
                        token=secrets.token_hex(TOKEN_BYTES),
                        event_type=event_type,
                        created_at=self.clock(),
                    )
                )

        except PersistenceError as e:
            logger.warning(
                f"Could not get or create unsubscribe token for user {user_id}: {e}",
                extra={
                    "event": "unsubscribe.token.unavailable",
                    "user_id": user_id,
                    "event_type": event_type,
                },
            )
            return None

        logger.info(
            "Created unsubscribe token",
            extra={
                "event": "unsubscribe.token.created",
                "user_id": user_id,
                "event_type": event_type,
            },
        )
        return token.token

    def build_unsubscribe_url(self, token: str) -> str:
        """Format the public unsubscribe link for a token."""
        return f"{self.config.base_url}{self.config.path_template.format(token=token)}"
