"""Redis-backed session store.

Layout:
- ``relay:session:{id}``               JSON document of the whole session
- ``relay:waiting``                    ZSET of WAITING_USER session ids, score = updated_at
- ``relay:waiting:owner:{user_id}``    same, per owner
- ``relay:session:{id}:lock``          per-session lease (SET NX PX)
- ``relay:session:{id}:replies``       Pub/Sub channel, one message per appended reply

Mutations are optimistic WATCH/MULTI transactions over the document and the
waiting indexes, so each one is applied atomically.
"""

import asyncio
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

import structlog
from redis.asyncio import Redis
from redis.exceptions import WatchError

from hitl_relay.core.exceptions import RelayError
from hitl_relay.sessions.models import PendingQuestion, Reply, Session, SessionStatus, utcnow
from hitl_relay.sessions.store import CLOSING_STATUSES, ReplyWait, SessionStore

logger = structlog.get_logger(__name__)

KEY_PREFIX = "relay:session:"
WAITING_KEY = "relay:waiting"
OWNER_WAITING_PREFIX = "relay:waiting:owner:"


class SessionLockTimeoutError(RelayError):
    """Raised when the per-session lease could not be acquired in time."""

    code = "SESSION_BUSY"
    status_code = 503


class RedisSessionStore(SessionStore):
    """Session store shared by every relay process pointing at the same Redis."""

    LOCK_TTL_MS = 10_000
    LOCK_WAIT_TIMEOUT = 10.0
    LOCK_RETRY_INTERVAL = 0.05

    def __init__(self, redis: Redis):
        self.redis = redis

    def _key(self, session_id: str) -> str:
        return f"{KEY_PREFIX}{session_id}"

    def _lock_key(self, session_id: str) -> str:
        return f"{KEY_PREFIX}{session_id}:lock"

    def _channel(self, session_id: str) -> str:
        return f"{KEY_PREFIX}{session_id}:replies"

    async def get(self, session_id: str) -> Session | None:
        raw = await self.redis.get(self._key(session_id))
        return Session.model_validate_json(raw) if raw else None

    async def get_or_create(
        self,
        session_id: str,
        initial_status: SessionStatus,
        owner_user_id: str | None = None,
    ) -> Session:
        session = Session(session_id=session_id, status=initial_status, owner_user_id=owner_user_id)
        created = await self.redis.set(self._key(session_id), session.model_dump_json(), nx=True)
        if created:
            logger.debug("session_created", session_id=session_id, status=initial_status.value)
            if initial_status == SessionStatus.WAITING_USER:
                await self._index(session)
            return session

        existing = await self.get(session_id)
        if existing is None:
            # Key deleted between SET NX and GET
            return await self.get_or_create(session_id, initial_status, owner_user_id)
        return existing

    async def set_pending_question(self, session_id: str, question: PendingQuestion) -> Session:
        def apply(session: Session) -> bool:
            session.pending_question = question
            session.status = SessionStatus.WAITING_USER
            session.updated_at = utcnow()
            return True

        return await self._mutate(session_id, apply)

    async def add_reply(self, session_id: str, reply: Reply) -> Session:
        def apply(session: Session) -> bool:
            session.replies.append(reply)
            session.pending_question = None
            session.status = SessionStatus.RESOLVED
            session.updated_at = utcnow()
            return True

        session = await self._mutate(session_id, apply)
        await self.redis.publish(self._channel(session_id), reply.reply_id)
        return session

    async def find_most_recent_waiting(self, owner_user_id: str | None = None) -> Session | None:
        index = f"{OWNER_WAITING_PREFIX}{owner_user_id}" if owner_user_id is not None else WAITING_KEY
        for session_id in await self.redis.zrevrange(index, 0, -1):
            session = await self.get(session_id)
            # The index may point at a session that just left WAITING_USER
            if session is None or session.status != SessionStatus.WAITING_USER:
                continue
            if owner_user_id is not None and session.owner_user_id != owner_user_id:
                continue
            return session
        return None

    async def list_waiting(self) -> list[Session]:
        session_ids = await self.redis.zrange(WAITING_KEY, 0, -1)
        if not session_ids:
            return []
        raws = await self.redis.mget([self._key(sid) for sid in session_ids])
        sessions = [Session.model_validate_json(raw) for raw in raws if raw]
        return [s for s in sessions if s.status == SessionStatus.WAITING_USER]

    async def close(self, session_id: str, status: SessionStatus) -> Session | None:
        if status not in CLOSING_STATUSES:
            raise ValueError(f"Cannot close a session with status {status.value}")

        def apply(session: Session) -> bool:
            if session.status != SessionStatus.WAITING_USER:
                return False
            session.pending_question = None
            session.status = status
            session.updated_at = utcnow()
            return True

        if await self.get(session_id) is None:
            return None
        session = await self._mutate(session_id, apply)
        if session is not None:
            await self.redis.publish(self._channel(session_id), status.value)
        return session

    @asynccontextmanager
    async def session_lock(self, session_id: str) -> AsyncIterator[None]:
        key = self._lock_key(session_id)
        token = str(uuid.uuid4())
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.LOCK_WAIT_TIMEOUT

        while not await self.redis.set(key, token, nx=True, px=self.LOCK_TTL_MS):
            if loop.time() >= deadline:
                logger.warning("session_lock_timeout", session_id=session_id)
                raise SessionLockTimeoutError(f"Session {session_id} is busy, retry later.")
            await asyncio.sleep(self.LOCK_RETRY_INTERVAL)

        try:
            yield
        finally:
            # Only release our own lease; an expired lease may belong to someone else now
            if await self.redis.get(key) == token:
                await self.redis.delete(key)

    async def wait_for_reply(self, session_id: str, timeout: float) -> None:
        if timeout <= 0:
            return
        async with self.reply_waiter(session_id) as wait:
            await wait(timeout)

    @asynccontextmanager
    async def reply_waiter(self, session_id: str) -> AsyncIterator[ReplyWait]:
        loop = asyncio.get_running_loop()
        pubsub = self.redis.pubsub()

        async def wait(timeout: float) -> None:
            deadline = loop.time() + timeout
            while (remaining := deadline - loop.time()) > 0:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=remaining)
                if message is not None:
                    return
                # Subscribe confirmations come back as None without blocking
                await asyncio.sleep(min(self.LOCK_RETRY_INTERVAL, max(remaining, 0)))

        try:
            await pubsub.subscribe(self._channel(session_id))
            yield wait
        finally:
            await pubsub.unsubscribe()
            await pubsub.aclose()

    async def _mutate(self, session_id: str, apply: Callable[[Session], bool]) -> Session | None:
        """Read-modify-write one session under WATCH, retrying on conflicts."""
        key = self._key(session_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        raise KeyError(f"Unknown session {session_id}")
                    session = Session.model_validate_json(raw)
                    if not apply(session):
                        return None

                    pipe.multi()
                    pipe.set(key, session.model_dump_json())
                    self._queue_index_update(pipe, session)
                    await pipe.execute()
                    return session
                except WatchError:
                    logger.debug("session_write_conflict_retry", session_id=session_id)
                    continue

    def _queue_index_update(self, pipe, session: Session) -> None:
        owner_key = f"{OWNER_WAITING_PREFIX}{session.owner_user_id}" if session.owner_user_id else None
        if session.status == SessionStatus.WAITING_USER:
            score = session.updated_at.timestamp()
            pipe.zadd(WAITING_KEY, {session.session_id: score})
            if owner_key:
                pipe.zadd(owner_key, {session.session_id: score})
        else:
            pipe.zrem(WAITING_KEY, session.session_id)
            if owner_key:
                pipe.zrem(owner_key, session.session_id)

    async def _index(self, session: Session) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            self._queue_index_update(pipe, session)
            await pipe.execute()
