"""Agent-facing question and reply endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from hitl_relay.api.deps import get_question_service, get_retrieval_service, relay_http_error
from hitl_relay.core.auth import AuthContext, require_auth
from hitl_relay.core.config import Settings, get_settings
from hitl_relay.core.exceptions import RelayError
from hitl_relay.services.question_service import QuestionService
from hitl_relay.services.retrieval_service import ReplyRetrievalService, parse_wait_sec
from hitl_relay.sessions.models import Reply, SessionStatus, Severity

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# Request/Response models
# ──────────────────────────────────────────────────────────────────────────────


class QuestionRequest(BaseModel):
    """Request body for POST /v1/sessions/{session_id}/questions."""

    text: str = Field(..., min_length=1)
    severity: Severity
    choices: list[str] | None = None
    timeout_sec: int | None = Field(default=None, ge=0)
    metadata: dict[str, Any] | None = None
    target_user_id: str | None = None


class QuestionResponse(BaseModel):
    session_id: str
    message_id: str
    status: SessionStatus


class RepliesResponse(BaseModel):
    """Response for GET /v1/sessions/{session_id}/replies.

    An empty ``replies`` list means the wait elapsed with nothing new.
    """

    session_id: str
    status: SessionStatus
    replies: list[Reply]


# ──────────────────────────────────────────────────────────────────────────────
# Endpoints
# ──────────────────────────────────────────────────────────────────────────────


@router.post("/sessions/{session_id}/questions", response_model=QuestionResponse, status_code=201)
async def post_question(
    session_id: str,
    body: QuestionRequest,
    auth: AuthContext = Depends(require_auth),
    service: QuestionService = Depends(get_question_service),
) -> QuestionResponse:
    """Install a pending question on a session, creating the session if needed.

    Delivery to the chat user happens in the background after this returns.

    Raises:
        HTTPException(409): A question is already pending on this session
        HTTPException(403): JWT caller named a different target_user_id
        HTTPException(400): target_user_id missing where required
    """
    try:
        accepted = await service.post_question(
            auth,
            session_id,
            text=body.text,
            severity=body.severity,
            choices=body.choices,
            timeout_sec=body.timeout_sec,
            metadata=body.metadata,
            target_user_id=body.target_user_id,
        )
    except RelayError as exc:
        raise relay_http_error(exc)

    return QuestionResponse(
        session_id=accepted.session_id,
        message_id=accepted.message_id,
        status=accepted.status,
    )


@router.get("/sessions/{session_id}/replies", response_model=RepliesResponse)
async def get_replies(
    session_id: str,
    request: Request,
    since: str | None = Query(default=None),
    wait_sec: str | None = Query(default=None),
    auth: AuthContext = Depends(require_auth),
    service: ReplyRetrievalService = Depends(get_retrieval_service),
    settings: Settings = Depends(get_settings),
) -> RepliesResponse:
    """Long-poll for replies after ``since``.

    ``wait_sec`` is parsed leniently (default 25, clamped to [0, 60]); a
    request never fails on it.
    """
    result = await service.poll(
        session_id,
        since=since,
        wait_sec=parse_wait_sec(wait_sec, settings.default_wait_sec, settings.max_wait_sec),
        is_disconnected=request.is_disconnected,
    )
    return RepliesResponse(session_id=result.session_id, status=result.status, replies=result.replies)
