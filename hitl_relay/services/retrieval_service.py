"""Reply retrieval with bounded long-polling."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import structlog

from hitl_relay.sessions.models import Reply, SessionStatus
from hitl_relay.sessions.store import SessionStore

logger = structlog.get_logger(__name__)

DEFAULT_WAIT_SEC = 25
MAX_WAIT_SEC = 60


def parse_wait_sec(raw: str | None, default: int = DEFAULT_WAIT_SEC, maximum: int = MAX_WAIT_SEC) -> int:
    """Lenient ``wait_sec`` parsing.

    Missing or unparsable values fall back to ``default``; the result is
    clamped to ``[0, maximum]``. An explicit 0 disables waiting.
    """
    if raw is None or raw == "":
        value = default
    else:
        try:
            value = int(raw)
        except (TypeError, ValueError):
            try:
                value = int(float(raw))
            except (TypeError, ValueError, OverflowError):
                value = default
    return max(0, min(value, maximum))


@dataclass
class PollResult:
    session_id: str
    status: SessionStatus
    replies: list[Reply] = field(default_factory=list)


class ReplyRetrievalService:
    """Answers ``GET .../replies`` requests.

    Args:
        store: Session store
        tick: Upper bound on one wait slice; the session is re-read and the
            client connection checked at least this often.
    """

    def __init__(self, store: SessionStore, tick: float = 1.0):
        self.store = store
        self.tick = tick

    async def poll(
        self,
        session_id: str,
        since: str | None = None,
        wait_sec: float = DEFAULT_WAIT_SEC,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    ) -> PollResult:
        """Return replies after ``since``, waiting up to ``wait_sec`` for one.

        Returns immediately when replies are already available or ``wait_sec``
        is 0. An empty list with the current status means the wait elapsed.
        Unknown sessions are created IDLE so they read as "nothing yet".
        """
        session = await self.store.get_or_create(session_id, SessionStatus.IDLE)
        replies = session.replies_after(since)
        if replies or wait_sec <= 0:
            return PollResult(session_id=session_id, status=session.status, replies=replies)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait_sec

        async with self.store.reply_waiter(session_id) as wait:
            # A reply may have landed before the subscription existed
            session = await self.store.get(session_id) or session
            replies = session.replies_after(since)

            while not replies:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break

                await wait(min(self.tick, remaining))

                if is_disconnected is not None and await is_disconnected():
                    logger.info("poll_abandoned", session_id=session_id)
                    return PollResult(session_id=session_id, status=session.status)

                session = await self.store.get(session_id) or session
                replies = session.replies_after(since)

        return PollResult(session_id=session_id, status=session.status, replies=replies)
