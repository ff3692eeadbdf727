from fastapi import APIRouter

from hitl_relay.api.routes import health, linking, questions, webhook

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(questions.router, prefix="/v1", tags=["sessions"])
api_router.include_router(linking.router, prefix="/v1", tags=["linking"])
api_router.include_router(webhook.router, prefix="/webhook", tags=["webhook"])
