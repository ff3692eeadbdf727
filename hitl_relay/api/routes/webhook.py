"""Kakao skill webhook. Unauthenticated; always answers 200 with a skill response."""

import structlog
from fastapi import APIRouter, Depends, Request

from hitl_relay.api.deps import get_webhook_service
from hitl_relay.services.webhook_service import WebhookService

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/kakao")
async def kakao_webhook(
    request: Request,
    service: WebhookService = Depends(get_webhook_service),
) -> dict:
    try:
        payload = await request.json()
    except ValueError as exc:
        logger.warning("webhook_payload_unreadable", error=str(exc))
        payload = {}
    return await service.handle(payload)
