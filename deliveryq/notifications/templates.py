"""Template rendering for notification emails using Jinja2.

Each event type maps to one HTML template in the
deliveryq.notifications.email_templates package (see catalog.py). Digest mode
renders several prior payloads into one message; only the first
``preview_limit`` entries are listed and the rest are summarized as
"...and N more".
"""

from typing import Any, Dict, Mapping, Optional, Sequence

from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateError

from deliveryq.logging import get_logger

from .catalog import EVENT_TYPES, EventType, get_digest_template_name, get_template_name
from .models import NotificationTemplateError

logger = get_logger(__name__, component="templates")

TEMPLATE_SUFFIX = ".html.j2"
DEFAULT_FRONTEND_URL = "http://localhost:3000"
DEFAULT_PREVIEW_LIMIT = 5


class TemplateRenderer:
    """Renders notification bodies from the catalog's templates.

    The event registry is injected so tests (and callers with their own
    catalog) can supply a different one.
    """

    def __init__(
        self,
        registry: Mapping[str, EventType] = EVENT_TYPES,
        frontend_url: str = DEFAULT_FRONTEND_URL,
        preview_limit: int = DEFAULT_PREVIEW_LIMIT,
        template_dir: str = "email_templates",
    ):
        """Initialize the renderer and its Jinja2 environment.

        Args:
            registry: Event catalog used to pick templates
            frontend_url: Base URL for action links in email bodies
            preview_limit: Maximum entries listed individually in a digest
            template_dir: Directory name within deliveryq.notifications
        """
        if preview_limit < 1:
            raise ValueError(f"preview_limit must be at least 1, got: {preview_limit}")

        self.registry = registry
        self.frontend_url = frontend_url.rstrip("/")
        self.preview_limit = preview_limit

        self.env = Environment(
            loader=PackageLoader("deliveryq.notifications", template_dir),
            autoescape=True,
            undefined=StrictUndefined,
        )
        self.env.filters["absolute_url"] = self.absolute_url

    def absolute_url(self, link: Optional[str]) -> Optional[str]:
        """Resolve a relative link against the frontend URL."""
        if not link:
            return None
        if link.startswith(("http://", "https://")):
            return link
        return f"{self.frontend_url}/{link.lstrip('/')}"

    def render(
        self,
        notification_type: Optional[str],
        data: Mapping[str, Any],
        unsubscribe_url: Optional[str] = None,
    ) -> str:
        """Render the body for a single notification.

        Args:
            notification_type: Event type; unknown types use the generic template
            data: Template data (title, message, link and event-specific fields)
            unsubscribe_url: Link rendered in the footer, if any

        Returns:
            Rendered HTML body

        Raises:
            NotificationTemplateError: If template rendering fails
        """
        template_name = get_template_name(notification_type, self.registry)
        context = self._base_context(notification_type, unsubscribe_url)
        context.update(data=dict(data), digest=False)
        return self._render(template_name, context)

    def render_digest(
        self,
        notification_type: Optional[str],
        payloads: Sequence[Mapping[str, Any]],
        total_count: int,
        unsubscribe_url: Optional[str] = None,
    ) -> str:
        """Render one digest body summarizing several notifications.

        Args:
            notification_type: Event type shared by the group (may be None)
            payloads: Template data of the group's members, oldest first
            total_count: Number of notifications the digest stands for

        Returns:
            Rendered HTML body

        Raises:
            NotificationTemplateError: If template rendering fails
        """
        if total_count < 1:
            raise NotificationTemplateError("A digest needs at least one notification")

        entries = [dict(payload) for payload in payloads[: self.preview_limit]]
        template_name = get_digest_template_name(notification_type, self.registry)

        context = self._base_context(notification_type, unsubscribe_url)
        context.update(
            data={},
            digest=True,
            entries=entries,
            total_count=total_count,
            remaining=max(total_count - len(entries), 0),
        )
        return self._render(template_name, context)

    def _base_context(
        self, notification_type: Optional[str], unsubscribe_url: Optional[str]
    ) -> Dict[str, Any]:
        return {
            "notification_type": notification_type,
            "frontend_url": self.frontend_url,
            "preferences_url": f"{self.frontend_url}/settings/notifications",
            "unsubscribe_url": unsubscribe_url,
        }

    def _render(self, template_name: str, context: Dict[str, Any]) -> str:
        try:
            template = self.env.get_template(f"{template_name}{TEMPLATE_SUFFIX}")
            body = template.render(context)
        except TemplateError as e:
            error_msg = f"Template rendering failed for '{template_name}': {e}"
            logger.error(error_msg, extra={"event": "templates.render.failed"}, exc_info=True)
            raise NotificationTemplateError(error_msg) from e

        logger.debug(
            f"Rendered template {template_name}",
            extra={"event": "templates.render.succeeded", "template": template_name},
        )
        return body
