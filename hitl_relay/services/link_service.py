"""Chat account linking and one-way notifications for agent-facing callers."""

import structlog

from hitl_relay.core.auth import AuthContext, resolve_acting_user
from hitl_relay.core.exceptions import RelayValidationError
from hitl_relay.core.logging import mask_key
from hitl_relay.outbound.notifier import NotificationDelivery, Notifier, SendResult
from hitl_relay.routing.strategy import RoutingStrategy
from hitl_relay.sessions.models import Severity

logger = structlog.get_logger(__name__)


class LinkService:
    def __init__(self, routing: RoutingStrategy):
        self.routing = routing

    async def link(self, auth: AuthContext, link_code: str, target_user_id: str | None = None) -> str:
        """Bind the chat identity behind ``link_code`` to the acting user.

        Returns the linked chat identity.

        Raises:
            RelayValidationError: Missing code, or static-token caller without target
            PermissionDeniedError: JWT caller naming another user
            LinkCodeInvalidError: Code unknown, used or expired
            LinkingUnavailableError: Not in multi-user mode
        """
        if not link_code or not link_code.strip():
            raise RelayValidationError("link_code is required.")

        user_id = resolve_acting_user(auth, target_user_id)
        if not user_id:
            raise RelayValidationError("target_user_id is required.")

        channel_user_key = await self.routing.complete_link(link_code, user_id)
        logger.info("chatbot_linked", user_id=user_id, channel_user=mask_key(channel_user_key))
        return channel_user_key


class NotifyService:
    def __init__(self, routing: RoutingStrategy, notifier: Notifier):
        self.routing = routing
        self.notifier = notifier

    async def notify(
        self,
        auth: AuthContext,
        session_id: str,
        text: str,
        severity: Severity = Severity.INFO,
        target_user_id: str | None = None,
    ) -> SendResult | None:
        """Send a one-way message to the acting user's chat identity.

        No session state is touched. Returns None when the notifier is
        disabled; delivery failures come back as a failed ``SendResult``.

        Raises:
            PermissionDeniedError: JWT caller naming another user
        """
        user_id = resolve_acting_user(auth, target_user_id)
        log = logger.bind(session_id=session_id, target_user_id=user_id)

        if not self.notifier.enabled:
            log.info("sender_disabled")
            return None

        channel_user_key = await self.routing.delivery_target(user_id)
        result = await self.notifier.send_notification(
            NotificationDelivery(
                session_id=session_id,
                text=text,
                severity=severity,
                channel_user_key=channel_user_key,
                target_user_id=user_id,
            )
        )
        if result.ok:
            log.info("notification_sent", provider_message_id=result.provider_message_id)
        else:
            log.error("notification_failed", error_code=result.error_code, error=result.error_message)
        return result
