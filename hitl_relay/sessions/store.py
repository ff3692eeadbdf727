"""Session store abstraction and the default in-memory implementation.

The store is the single source of truth for session state transitions. Every
mutation is an atomic unit and every read returns a snapshot, so callers never
observe a half-applied transition. Check-then-act sequences that span several
calls (e.g. "install a question unless one is pending") must run inside
``session_lock(session_id)``.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager

import structlog

from hitl_relay.sessions.models import PendingQuestion, Reply, Session, SessionStatus, utcnow

logger = structlog.get_logger(__name__)

# Statuses a waiting session may be closed with, outside of a reply
CLOSING_STATUSES = (SessionStatus.EXPIRED, SessionStatus.CANCELED)

ReplyWait = Callable[[float], Awaitable[None]]


class SessionStore(ABC):
    """Storage contract the relay core depends on."""

    @abstractmethod
    async def get(self, session_id: str) -> Session | None:
        """Return a snapshot of the session, or None if it was never referenced."""

    @abstractmethod
    async def get_or_create(
        self,
        session_id: str,
        initial_status: SessionStatus,
        owner_user_id: str | None = None,
    ) -> Session:
        """Return the existing session unchanged, or create it with the given status/owner."""

    @abstractmethod
    async def set_pending_question(self, session_id: str, question: PendingQuestion) -> Session:
        """Install ``question`` and move the session to WAITING_USER.

        Unconditional: the at-most-one-pending check belongs to the caller.
        """

    @abstractmethod
    async def add_reply(self, session_id: str, reply: Reply) -> Session:
        """Append ``reply``, clear the pending question and move to RESOLVED.

        Unconditional, and the only transition that resolves a session. Wakes
        every waiter blocked in ``wait_for_reply`` for this session.
        """

    @abstractmethod
    async def find_most_recent_waiting(self, owner_user_id: str | None = None) -> Session | None:
        """Most recently updated WAITING_USER session, optionally restricted to one owner."""

    @abstractmethod
    async def list_waiting(self) -> list[Session]:
        """All WAITING_USER sessions."""

    @abstractmethod
    async def close(self, session_id: str, status: SessionStatus) -> Session | None:
        """Clear the pending question of a waiting session and set EXPIRED/CANCELED.

        Returns None (and changes nothing) when the session is not waiting.
        """

    @abstractmethod
    def session_lock(self, session_id: str):
        """Async context manager giving mutual exclusion per session id."""

    @abstractmethod
    async def wait_for_reply(self, session_id: str, timeout: float) -> None:
        """Suspend until a reply is appended to the session or ``timeout`` elapses.

        May return early; callers always re-check the session afterwards.
        """

    @abstractmethod
    def reply_waiter(self, session_id: str) -> AbstractAsyncContextManager[ReplyWait]:
        """Hold one reply subscription for the session across several waits.

        Yields ``wait(timeout)`` with the semantics of ``wait_for_reply``. A
        reply appended any time after entry wakes the next ``wait``.
        """

    async def close_connections(self) -> None:
        """Release backend resources on shutdown."""


class InMemorySessionStore(SessionStore):
    """Volatile store backed by a dict; state is lost on restart.

    All mutations run without an ``await`` in the middle, so on a single event
    loop each one is atomic.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._reply_events: dict[str, asyncio.Event] = {}

    async def get(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    async def get_or_create(
        self,
        session_id: str,
        initial_status: SessionStatus,
        owner_user_id: str | None = None,
    ) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            session = Session(session_id=session_id, status=initial_status, owner_user_id=owner_user_id)
            self._sessions[session_id] = session
            logger.debug("session_created", session_id=session_id, status=initial_status.value)
        return session.model_copy(deep=True)

    async def set_pending_question(self, session_id: str, question: PendingQuestion) -> Session:
        session = self._require(session_id)
        session.pending_question = question
        session.status = SessionStatus.WAITING_USER
        session.updated_at = utcnow()
        return session.model_copy(deep=True)

    async def add_reply(self, session_id: str, reply: Reply) -> Session:
        session = self._require(session_id)
        session.replies.append(reply)
        session.pending_question = None
        session.status = SessionStatus.RESOLVED
        session.updated_at = utcnow()
        self._notify_reply(session_id)
        return session.model_copy(deep=True)

    async def find_most_recent_waiting(self, owner_user_id: str | None = None) -> Session | None:
        latest: Session | None = None
        for session in self._sessions.values():
            if session.status != SessionStatus.WAITING_USER:
                continue
            if owner_user_id is not None and session.owner_user_id != owner_user_id:
                continue
            if latest is None or session.updated_at > latest.updated_at:
                latest = session
        return latest.model_copy(deep=True) if latest else None

    async def list_waiting(self) -> list[Session]:
        return [
            s.model_copy(deep=True)
            for s in self._sessions.values()
            if s.status == SessionStatus.WAITING_USER
        ]

    async def close(self, session_id: str, status: SessionStatus) -> Session | None:
        if status not in CLOSING_STATUSES:
            raise ValueError(f"Cannot close a session with status {status.value}")
        session = self._sessions.get(session_id)
        if session is None or session.status != SessionStatus.WAITING_USER:
            return None
        session.pending_question = None
        session.status = status
        session.updated_at = utcnow()
        self._notify_reply(session_id)
        return session.model_copy(deep=True)

    @asynccontextmanager
    async def session_lock(self, session_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            yield

    async def wait_for_reply(self, session_id: str, timeout: float) -> None:
        if timeout <= 0:
            return
        event = self._reply_events.setdefault(session_id, asyncio.Event())
        try:
            await asyncio.wait_for(event.wait(), timeout)
        except TimeoutError:
            pass

    @asynccontextmanager
    async def reply_waiter(self, session_id: str) -> AsyncIterator[ReplyWait]:
        event = self._reply_events.setdefault(session_id, asyncio.Event())

        async def wait(timeout: float) -> None:
            nonlocal event
            if timeout <= 0:
                return
            if not event.is_set():
                try:
                    await asyncio.wait_for(event.wait(), timeout)
                except TimeoutError:
                    return
            event = self._reply_events.setdefault(session_id, asyncio.Event())

        yield wait

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(f"Unknown session {session_id}")
        return session

    def _notify_reply(self, session_id: str) -> None:
        # Current waiters wake on the old event; later waiters get a fresh one
        event = self._reply_events.pop(session_id, None)
        if event is not None:
            event.set()


# Process-wide store, chosen at startup
_store: SessionStore | None = None


def init_session_store(store: SessionStore) -> None:
    """Install the process-wide session store."""
    global _store
    _store = store


def get_session_store() -> SessionStore:
    """Return the process-wide session store.

    Raises RuntimeError if init_session_store() has not been called.
    """
    if _store is None:
        raise RuntimeError("Session store not initialized. Call init_session_store() first.")
    return _store


async def close_session_store() -> None:
    global _store

    if _store is not None:
        await _store.close_connections()
        _store = None
