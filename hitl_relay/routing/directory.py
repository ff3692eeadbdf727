"""User directory: chat channel identity <-> internal user id, kept in two Redis hashes."""

import structlog
from redis.asyncio import Redis
from redis.exceptions import WatchError

logger = structlog.get_logger(__name__)

CHANNEL_TO_USER_KEY = "relay:directory:channel_to_user"
USER_TO_CHANNEL_KEY = "relay:directory:user_to_channel"


class UserDirectory:
    def __init__(self, redis: Redis):
        self.redis = redis

    async def lookup_user(self, channel_user_key: str) -> str | None:
        """Reverse lookup used by the webhook: chat identity -> user id."""
        return await self.redis.hget(CHANNEL_TO_USER_KEY, channel_user_key)

    async def channel_for_user(self, user_id: str) -> str | None:
        """Forward lookup used for outbound delivery: user id -> chat identity."""
        return await self.redis.hget(USER_TO_CHANNEL_KEY, user_id)

    async def link(self, user_id: str, channel_user_key: str) -> None:
        """Bind ``channel_user_key`` to ``user_id``, replacing earlier bindings of either side."""
        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(CHANNEL_TO_USER_KEY, USER_TO_CHANNEL_KEY)
                    previous_channel = await pipe.hget(USER_TO_CHANNEL_KEY, user_id)
                    previous_user = await pipe.hget(CHANNEL_TO_USER_KEY, channel_user_key)

                    pipe.multi()
                    if previous_channel and previous_channel != channel_user_key:
                        pipe.hdel(CHANNEL_TO_USER_KEY, previous_channel)
                    if previous_user and previous_user != user_id:
                        pipe.hdel(USER_TO_CHANNEL_KEY, previous_user)
                    pipe.hset(CHANNEL_TO_USER_KEY, channel_user_key, user_id)
                    pipe.hset(USER_TO_CHANNEL_KEY, user_id, channel_user_key)
                    await pipe.execute()
                    break
                except WatchError:
                    logger.debug("directory_link_conflict_retry", user_id=user_id)
                    continue

        logger.info("chat_identity_linked", user_id=user_id, relinked=bool(previous_channel and previous_channel != channel_user_key))
