"""Shared Redis client for the session store, user directory and link codes."""

from urllib.parse import urlsplit, urlunsplit

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from hitl_relay.core.config import get_settings

logger = structlog.get_logger(__name__)

_client: redis.Redis | None = None


def redact_url(url: str) -> str:
    """Drop credentials from a redis:// URL before it reaches the logs."""
    parts = urlsplit(url)
    if parts.password is None and parts.username is None:
        return url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, f"***@{host}", parts.path, parts.query, parts.fragment))


async def init_redis(url: str | None = None) -> redis.Redis:
    """Connect the shared client once; later calls return the existing one."""
    global _client

    if _client is not None:
        return _client

    redis_url = url or get_settings().redis_url
    client = redis.from_url(
        redis_url,
        encoding="utf-8",
        decode_responses=True,
        health_check_interval=30,
    )
    # Fail startup instead of the first webhook
    await client.ping()

    _client = client
    logger.info("redis_connected", url=redact_url(redis_url))
    return client


async def close_redis() -> None:
    global _client

    if _client is not None:
        await _client.aclose()
        _client = None
        logger.info("redis_closed")


def get_redis() -> redis.Redis:
    """Return the shared client.

    Raises RuntimeError if init_redis() has not been called.
    """
    if _client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _client


async def ping_redis() -> bool:
    """Readiness probe: True when the shared client answers PING."""
    if _client is None:
        return False
    try:
        return bool(await _client.ping())
    except RedisError as exc:
        logger.error("redis_ping_failed", error=str(exc), error_type=type(exc).__name__)
        return False
