"""HITL Relay: FastAPI application entry point."""

import asyncio
import signal
import uuid
from contextlib import asynccontextmanager

# CRITICAL ORDER: configure_structlog MUST be called before all other app imports
# to avoid the structlog cache pitfall (structlog caches the processor chain on first use).
from hitl_relay.core.logging import configure_structlog
from hitl_relay.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse

from hitl_relay import __version__
from hitl_relay.api.routes import api_router
from hitl_relay.core.config import Settings, get_settings
from hitl_relay.db import close_redis, get_redis, init_redis
from hitl_relay.middleware.correlation import (
    setup_correlation_middleware,
    get_correlation_id,
)
from hitl_relay.outbound import (
    DisabledNotifier,
    HttpNotifier,
    OutboundDispatcher,
    get_dispatcher,
    init_dispatcher,
)
from hitl_relay.routing import (
    GlobalRouting,
    LinkCodeStore,
    PerUserRouting,
    UserDirectory,
    init_routing_strategy,
)
from hitl_relay.sessions import (
    InMemorySessionStore,
    RedisSessionStore,
    SessionExpirySweeper,
    close_session_store,
    get_session_store,
    init_session_store,
)

logger = structlog.get_logger(__name__)


def validate_startup_settings(settings: Settings) -> None:
    """Fail fast when the agent-facing API would be unauthenticated."""
    if settings.fixed_user_key == "" and not settings.multi_user:
        logger.warning("fixed_user_key_missing", effect="every webhook sender is rejected")
    if settings.debug:
        return  # Skip in dev/test mode
    if not settings.auth_token and not settings.cognito_enabled:
        raise RuntimeError("Set AUTH_TOKEN or the COGNITO_* settings before starting the relay.")


async def init_components(settings: Settings) -> None:
    """Build the store, routing strategy and outbound dispatcher for this process."""
    if settings.redis_required:
        await init_redis()

    if settings.session_backend == "redis":
        store = RedisSessionStore(get_redis())
    else:
        store = InMemorySessionStore()
    init_session_store(store)
    logger.info("session_store_initialized", backend=settings.session_backend)

    if settings.multi_user:
        redis = get_redis()
        strategy = PerUserRouting(
            UserDirectory(redis),
            LinkCodeStore(redis, ttl=settings.link_code_ttl_sec),
            fixed_user_key=settings.fixed_user_key,
        )
    else:
        strategy = GlobalRouting(fixed_user_key=settings.fixed_user_key)
    init_routing_strategy(strategy)
    logger.info("routing_initialized", mode=strategy.mode)

    if settings.notifier_url:
        notifier = HttpNotifier(
            settings.notifier_url,
            token=settings.notifier_token,
            timeout=settings.notifier_timeout_sec,
        )
    else:
        notifier = DisabledNotifier()
    init_dispatcher(OutboundDispatcher(notifier))
    logger.info("notifier_initialized", enabled=notifier.enabled)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Graceful shutdown flag: SIGTERM flips it so the health check returns 503
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    try:
        signal.signal(signal.SIGTERM, handle_sigterm)
    except ValueError:
        # Not on the main thread (embedded test servers)
        logger.debug("sigterm_handler_skipped")

    # Startup
    settings = get_settings()
    logger.info(
        "startup_begin",
        app_name=settings.app_name,
        debug=settings.debug,
        routing_mode=settings.routing_mode,
    )

    validate_startup_settings(settings)
    await init_components(settings)

    sweeper: SessionExpirySweeper | None = None
    sweeper_task: asyncio.Task | None = None
    if settings.expiry_sweep_enabled:
        sweeper = SessionExpirySweeper(get_session_store(), interval=settings.expiry_sweep_interval_sec)
        sweeper_task = asyncio.create_task(sweeper.run())

    yield

    # Shutdown
    logger.info("shutdown_begin")
    if sweeper is not None and sweeper_task is not None:
        sweeper.stop()
        await sweeper_task

    dispatcher = get_dispatcher()
    await dispatcher.drain()
    await dispatcher.notifier.aclose()
    await close_session_store()
    await close_redis()
    logger.info("shutdown_complete")


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Global exception handler for HTTPException with debug_id tracking.

    Logs errors server-side with full context, returns sanitized response to client.
    """
    debug_id = str(uuid.uuid4())
    corr_id = get_correlation_id()

    # Extract user_id if available
    user_id = getattr(request.state, "user_id", None)

    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "http_exception",
        status_code=exc.status_code,
        debug_id=debug_id,
        correlation_id=corr_id,
        path=request.url.path,
        method=request.method,
        user_id=user_id,
        detail=exc.detail,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "debug_id": debug_id},
        headers=getattr(exc, "headers", None),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors with debug_id tracking.

    Logs full exception with traceback, returns generic 500 to client.
    """
    debug_id = str(uuid.uuid4())
    corr_id = get_correlation_id()

    user_id = getattr(request.state, "user_id", None)

    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        correlation_id=corr_id,
        path=request.url.path,
        method=request.method,
        user_id=user_id,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    # No internal details leaked
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "debug_id": debug_id},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Human-in-the-loop question/answer relay between agents and a chat channel",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # Correlation ID middleware (runs first on incoming requests)
    setup_correlation_middleware(app)

    # Exception handlers
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router)

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "hitl_relay.main:app",
        host="0.0.0.0",
        port=8000,
        reload=_early_settings.debug,
    )
