"""Agent-facing notify and chat account linking endpoints."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from hitl_relay.api.deps import get_link_service, get_notify_service, relay_http_error
from hitl_relay.core.auth import AuthContext, require_auth
from hitl_relay.core.exceptions import RelayError
from hitl_relay.services.link_service import LinkService, NotifyService
from hitl_relay.sessions.models import Severity

router = APIRouter()


class NotifyRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    severity: Severity = Severity.INFO
    target_user_id: str | None = None


class LinkChatbotRequest(BaseModel):
    link_code: str = Field(..., min_length=1)
    target_user_id: str | None = None


class LinkChatbotResponse(BaseModel):
    ok: bool
    message: str
    chatbot_user_id: str


@router.post("/notify")
async def notify(
    body: NotifyRequest,
    auth: AuthContext = Depends(require_auth),
    service: NotifyService = Depends(get_notify_service),
):
    """Send a one-way notification to the chat user. No reply is expected.

    Returns 502 with the failure code when the delivery gateway rejects or
    cannot be reached.
    """
    try:
        result = await service.notify(
            auth,
            body.session_id,
            body.text,
            severity=body.severity,
            target_user_id=body.target_user_id,
        )
    except RelayError as exc:
        raise relay_http_error(exc)

    if result is None:
        return {"ok": True, "message": "Notification logged (sender disabled)."}

    if not result.ok:
        return JSONResponse(
            status_code=502,
            content={"ok": False, "error_code": result.error_code, "error_message": result.error_message},
        )

    return {"ok": True, "provider_message_id": result.provider_message_id}


@router.post("/link-chatbot", response_model=LinkChatbotResponse)
async def link_chatbot(
    body: LinkChatbotRequest,
    auth: AuthContext = Depends(require_auth),
    service: LinkService = Depends(get_link_service),
) -> LinkChatbotResponse:
    """Bind the chat identity that received ``link_code`` to the acting user.

    Raises:
        HTTPException(400): Code invalid/expired, or target_user_id missing
        HTTPException(403): JWT caller named a different target_user_id
        HTTPException(503): Linking is not available in single-user mode
    """
    try:
        channel_user_key = await service.link(auth, body.link_code, body.target_user_id)
    except RelayError as exc:
        raise relay_http_error(exc)

    return LinkChatbotResponse(
        ok=True,
        message="Chat account linked.",
        chatbot_user_id=channel_user_key,
    )
