"""Question intake: install a pending question and hand it to outbound delivery."""

from dataclasses import dataclass
from typing import Any

import structlog

from hitl_relay.core.auth import AuthContext
from hitl_relay.core.exceptions import PendingQuestionExistsError
from hitl_relay.outbound.dispatcher import OutboundDispatcher
from hitl_relay.outbound.notifier import QuestionDelivery
from hitl_relay.routing.strategy import RoutingStrategy
from hitl_relay.sessions.models import PendingQuestion, SessionStatus, Severity
from hitl_relay.sessions.store import SessionStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class QuestionAccepted:
    session_id: str
    message_id: str
    status: SessionStatus


class QuestionService:
    def __init__(self, store: SessionStore, routing: RoutingStrategy, dispatcher: OutboundDispatcher):
        self.store = store
        self.routing = routing
        self.dispatcher = dispatcher

    async def post_question(
        self,
        auth: AuthContext,
        session_id: str,
        text: str,
        severity: Severity,
        choices: list[str] | None = None,
        timeout_sec: int | None = None,
        metadata: dict[str, Any] | None = None,
        target_user_id: str | None = None,
    ) -> QuestionAccepted:
        """Install a new pending question on ``session_id``.

        The session is created on first reference, owned by the user the
        routing strategy derives from the caller. Delivery is scheduled after
        the question is stored and never affects the outcome.

        Raises:
            PendingQuestionExistsError: The session already has a pending question
            PermissionDeniedError: Caller may not post for ``target_user_id``
            RelayValidationError: ``target_user_id`` required but missing
        """
        owner_user_id = self.routing.question_owner(auth, target_user_id)
        log = logger.bind(session_id=session_id, owner_user_id=owner_user_id)

        async with self.store.session_lock(session_id):
            session = await self.store.get_or_create(
                session_id, SessionStatus.WAITING_USER, owner_user_id
            )
            if session.pending_question is not None:
                log.info("question_conflict", pending_message_id=session.pending_question.message_id)
                raise PendingQuestionExistsError(session_id, session.pending_question.message_id)

            question = PendingQuestion(
                text=text,
                choices=choices,
                timeout_sec=timeout_sec,
                severity=severity,
                metadata=metadata,
            )
            session = await self.store.set_pending_question(session_id, question)

        log.info("question_posted", message_id=question.message_id, severity=severity.value)

        # Sessions created earlier keep their original owner
        self.dispatcher.dispatch_question(
            QuestionDelivery(
                session_id=session_id,
                message_id=question.message_id,
                question_text=text,
                choices=choices or [],
                target_user_id=session.owner_user_id,
            ),
            resolve_target=self.routing.delivery_target,
        )

        return QuestionAccepted(
            session_id=session_id,
            message_id=question.message_id,
            status=session.status,
        )
