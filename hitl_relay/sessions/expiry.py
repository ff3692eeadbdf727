"""SessionExpirySweeper: periodic EXPIRED transition for overdue pending questions.

A pending question is overdue once ``created_at + timeout_sec`` has passed.
Questions without ``timeout_sec`` never expire. The sweeper is off unless
``EXPIRY_SWEEP_ENABLED`` is set; without it the store never expires anything
and the agent enforces its own timeout by ceasing to poll.

Runs as an asyncio.Task inside the app lifespan, not a separate process.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import structlog

from hitl_relay.sessions.models import Session, SessionStatus, utcnow
from hitl_relay.sessions.store import SessionStore

logger = structlog.get_logger(__name__)


def is_overdue(session: Session, now: datetime) -> bool:
    question = session.pending_question
    if question is None or not question.timeout_sec:
        return False
    return question.created_at + timedelta(seconds=question.timeout_sec) <= now


class SessionExpirySweeper:
    """Moves overdue WAITING_USER sessions to EXPIRED on a fixed interval.

    Usage:
        sweeper = SessionExpirySweeper(store, interval=60)
        task = asyncio.create_task(sweeper.run())
        ...
        sweeper.stop()
        await task
    """

    def __init__(self, store: SessionStore, interval: float = 60) -> None:
        self.store = store
        self.interval = interval
        self._stopped = asyncio.Event()

    async def sweep_once(self, now: datetime | None = None) -> list[str]:
        """Expire every overdue session. Returns the expired session ids."""
        now = now or utcnow()
        expired: list[str] = []
        for session in await self.store.list_waiting():
            if not is_overdue(session, now):
                continue
            async with self.store.session_lock(session.session_id):
                current = await self.store.get(session.session_id)
                # Re-check: a reply may have landed since list_waiting()
                if current is None or not is_overdue(current, now):
                    continue
                if await self.store.close(session.session_id, SessionStatus.EXPIRED):
                    expired.append(session.session_id)
                    logger.info(
                        "session_expired",
                        session_id=session.session_id,
                        message_id=current.pending_question.message_id,
                    )
        return expired

    async def run(self) -> None:
        """Sweep every ``interval`` seconds until stop() is called.

        Sweep failures are logged and the loop continues.
        """
        logger.info("expiry_sweeper_started", interval=self.interval)
        while not self._stopped.is_set():
            try:
                await asyncio.wait_for(self._stopped.wait(), self.interval)
            except TimeoutError:
                pass
            if self._stopped.is_set():
                break
            try:
                await self.sweep_once()
            except Exception as exc:
                logger.warning("expiry_sweep_failed", error=str(exc), error_type=type(exc).__name__)
        logger.info("expiry_sweeper_stopped")

    def stop(self) -> None:
        self._stopped.set()
