"""Single-use link codes binding an unmapped chat identity to a future user id.

A code is 6 uppercase hex characters (3 random bytes), stored as
``relay:link_code:{CODE}`` -> chat identity with a TTL; Redis expiry is the
expiry sweep. Resolving a code deletes it (GETDEL), so it works once.
"""

import secrets

import structlog
from redis.asyncio import Redis

logger = structlog.get_logger(__name__)

KEY_PREFIX = "relay:link_code:"
CODE_BYTES = 3
DEFAULT_TTL = 600  # 10 minutes


class LinkCodeStore:
    """Issues and redeems link codes."""

    MAX_ATTEMPTS = 5

    def __init__(self, redis: Redis, ttl: int = DEFAULT_TTL):
        self.redis = redis
        self.ttl = ttl

    def _key(self, code: str) -> str:
        return f"{KEY_PREFIX}{code.strip().upper()}"

    async def create(self, channel_user_key: str) -> str:
        """Issue a fresh code for ``channel_user_key``.

        Raises:
            RuntimeError: if no unused code could be drawn (code space exhausted)
        """
        for _ in range(self.MAX_ATTEMPTS):
            code = secrets.token_hex(CODE_BYTES).upper()
            if await self.redis.set(self._key(code), channel_user_key, nx=True, ex=self.ttl):
                logger.info("link_code_issued", ttl=self.ttl)
                return code
        raise RuntimeError("Could not allocate a unique link code")

    async def resolve(self, code: str) -> str | None:
        """Redeem ``code`` (case-insensitive) and return the bound chat identity.

        Returns None for unknown, already used or expired codes.
        """
        if not code or not code.strip():
            return None
        return await self.redis.getdel(self._key(code))
