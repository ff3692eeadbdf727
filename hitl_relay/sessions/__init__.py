"""Session state: models, stores and the expiry sweep."""

from hitl_relay.sessions.models import (
    PendingQuestion,
    Reply,
    ReplyType,
    Session,
    SessionStatus,
    Severity,
)
from hitl_relay.sessions.store import (
    InMemorySessionStore,
    SessionStore,
    close_session_store,
    get_session_store,
    init_session_store,
)
from hitl_relay.sessions.redis_store import RedisSessionStore, SessionLockTimeoutError
from hitl_relay.sessions.expiry import SessionExpirySweeper

__all__ = [
    "InMemorySessionStore",
    "PendingQuestion",
    "RedisSessionStore",
    "Reply",
    "ReplyType",
    "Session",
    "SessionExpirySweeper",
    "SessionLockTimeoutError",
    "SessionStatus",
    "SessionStore",
    "Severity",
    "close_session_store",
    "get_session_store",
    "init_session_store",
]
