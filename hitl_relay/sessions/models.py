"""Session, pending question and reply records."""

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return str(uuid.uuid4())


class SessionStatus(str, Enum):
    """Session lifecycle states."""

    IDLE = "IDLE"
    WAITING_USER = "WAITING_USER"
    RESOLVED = "RESOLVED"
    EXPIRED = "EXPIRED"  # produced only by the expiry sweep
    CANCELED = "CANCELED"  # reserved, no route produces it


class Severity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    DANGER = "DANGER"


class ReplyType(str, Enum):
    TEXT = "TEXT"
    CHOICE = "CHOICE"
    CANCEL = "CANCEL"  # reserved


class PendingQuestion(BaseModel):
    """The single outstanding question of a session."""

    message_id: str = Field(default_factory=new_id)
    text: str
    choices: list[str] | None = None
    timeout_sec: int | None = None  # advisory for the agent
    severity: Severity
    metadata: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=utcnow)


class Reply(BaseModel):
    """One inbound answer from the chat channel."""

    reply_id: str = Field(default_factory=new_id)
    type: ReplyType
    text: str | None = None
    choice: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class Session(BaseModel):
    """One question/answer exchange context, keyed by a client-supplied id."""

    session_id: str
    status: SessionStatus
    pending_question: PendingQuestion | None = None
    replies: list[Reply] = Field(default_factory=list)
    owner_user_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def replies_after(self, since: str | None) -> list[Reply]:
        """Replies strictly after ``since`` in arrival order.

        An unknown ``since`` id is treated as stale and the full list is returned.
        """
        if since:
            for idx, reply in enumerate(self.replies):
                if reply.reply_id == since:
                    return self.replies[idx + 1:]
        return list(self.replies)
