import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from hitl_relay.core.config import get_settings
from hitl_relay.db import ping_redis
from hitl_relay.sessions.store import get_session_store

logger = structlog.get_logger(__name__)

router = APIRouter()

SERVICE_NAME = "hitl-relay"


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint for load balancer.

    Returns 503 during graceful shutdown so the balancer stops routing traffic.
    """
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(
            status_code=503,
            content={"status": "shutting_down", "service": SERVICE_NAME},
        )
    return {"status": "healthy", "service": SERVICE_NAME}


@router.get("/ready")
async def readiness_check():
    """Readiness check - verifies the session store (and Redis when used) is available."""
    settings = get_settings()
    checks = {"session_store": False}

    try:
        get_session_store()
        checks["session_store"] = True
    except RuntimeError as e:
        logger.error("session_store_check_failed", error=str(e))

    if settings.redis_required:
        checks["redis"] = await ping_redis()

    all_healthy = all(checks.values())
    status_code = 200 if all_healthy else 503

    return JSONResponse(
        status_code=status_code,
        content={"status": "ready" if all_healthy else "degraded", "checks": checks},
    )
