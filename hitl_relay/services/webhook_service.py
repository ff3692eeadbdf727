"""Reply intake from the chat provider webhook.

Every path ends in a chat-formatted response; the provider never sees an error.
"""

from collections.abc import Iterable

import structlog

from hitl_relay.channels import kakao
from hitl_relay.core.logging import mask_key
from hitl_relay.routing.strategy import ResolutionKind, RoutingStrategy
from hitl_relay.sessions.models import Reply, ReplyType, SessionStatus
from hitl_relay.sessions.store import SessionStore

logger = structlog.get_logger(__name__)

DEFAULT_QUERY_KEYWORDS = ("pending", "?", "질문")

MSG_UNIDENTIFIED = "Unable to identify the user."
MSG_NOT_PERMITTED = "This user is not permitted."
MSG_NEEDS_LINKING = (
    "This chat account is not linked yet.\n"
    "Link code: {code}\n"
    "Enter the code in the relay within {minutes} minutes to finish linking."
)
MSG_NO_PENDING = "There is no pending question right now."
MSG_NO_QUESTION_TEXT = "(no question text)"
MSG_RECEIVED = "Your answer has been received."
MSG_FAILED = "Something went wrong. Please try again shortly."


def normalize(text: str) -> str:
    return text.strip().casefold()


def classify_reply(text: str, choices: list[str] | None) -> tuple[ReplyType, str | None]:
    """CHOICE with the original candidate on a case-insensitive exact match, else TEXT."""
    normalized = normalize(text)
    for candidate in choices or []:
        if normalize(candidate) == normalized:
            return ReplyType.CHOICE, candidate
    return ReplyType.TEXT, None


class WebhookService:
    def __init__(
        self,
        store: SessionStore,
        routing: RoutingStrategy,
        query_keywords: Iterable[str] = DEFAULT_QUERY_KEYWORDS,
        link_code_ttl_sec: int = 600,
    ):
        self.store = store
        self.routing = routing
        self.query_keywords = frozenset(normalize(k) for k in query_keywords)
        self.link_code_ttl_sec = link_code_ttl_sec

    def is_query(self, text: str) -> bool:
        return normalize(text) in self.query_keywords

    async def handle(self, payload: object) -> dict:
        """Process one inbound skill request and build the chat response."""
        try:
            return await self._handle(payload)
        except Exception as exc:
            logger.error("webhook_failed", error=str(exc), error_type=type(exc).__name__, exc_info=True)
            return kakao.simple_text(MSG_FAILED)

    async def _handle(self, payload: object) -> dict:
        message = kakao.parse_inbound(payload)
        if not message.channel_user_key:
            logger.info("webhook_unidentified")
            return kakao.simple_text(MSG_UNIDENTIFIED)

        log = logger.bind(channel_user=mask_key(message.channel_user_key))
        log.debug("webhook_received")

        resolution = await self.routing.resolve(message.channel_user_key)
        if resolution.kind == ResolutionKind.REJECTED:
            log.info("webhook_rejected")
            return kakao.simple_text(MSG_NOT_PERMITTED)
        if resolution.kind == ResolutionKind.NEEDS_LINKING:
            log.info("link_code_issued")
            return kakao.simple_text(
                MSG_NEEDS_LINKING.format(
                    code=resolution.link_code,
                    minutes=max(1, self.link_code_ttl_sec // 60),
                )
            )

        owner_user_id = resolution.user_id if resolution.kind == ResolutionKind.SCOPED else None
        session = await self.store.find_most_recent_waiting(owner_user_id)
        if session is None:
            log.info("no_pending_question", user_id=owner_user_id)
            return kakao.simple_text(MSG_NO_PENDING)

        log = log.bind(session_id=session.session_id)

        if self.is_query(message.text):
            question = session.pending_question
            log.info("pending_question_shown")
            return kakao.text_with_quick_replies(
                question.text if question else MSG_NO_QUESTION_TEXT,
                question.choices if question else None,
            )

        async with self.store.session_lock(session.session_id):
            current = await self.store.get(session.session_id)
            if current is None or current.status != SessionStatus.WAITING_USER:
                log.info("no_pending_question", reason="resolved_concurrently")
                return kakao.simple_text(MSG_NO_PENDING)

            choices = current.pending_question.choices if current.pending_question else None
            reply_type, choice = classify_reply(message.text, choices)
            reply = Reply(type=reply_type, text=message.text or None, choice=choice)
            await self.store.add_reply(session.session_id, reply)

        log.info("reply_recorded", reply_id=reply.reply_id, reply_type=reply_type.value)
        return kakao.simple_text(MSG_RECEIVED)
