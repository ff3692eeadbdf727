"""Shared test fixtures for all test groups."""

import pytest
from fakeredis import FakeAsyncRedis

from hitl_relay.core.auth import COGNITO_JWT, STATIC_TOKEN, AuthContext
from hitl_relay.outbound.notifier import (
    NotificationDelivery,
    Notifier,
    QuestionDelivery,
    SendResult,
)
from hitl_relay.sessions.store import InMemorySessionStore

FIXED_USER_KEY = "kakao-fixed-user-0001"


class RecordingNotifier(Notifier):
    """Notifier fake that records deliveries instead of sending them."""

    def __init__(self, result: SendResult | None = None, enabled: bool = True):
        self.enabled = enabled
        self.result = result or SendResult(ok=True, provider_message_id="provider-1")
        self.questions: list[QuestionDelivery] = []
        self.notifications: list[NotificationDelivery] = []
        self.closed = False

    async def send_question(self, delivery: QuestionDelivery) -> SendResult:
        self.questions.append(delivery)
        return self.result

    async def send_notification(self, delivery: NotificationDelivery) -> SendResult:
        self.notifications.append(delivery)
        return self.result

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_redis():
    """Provide fakeredis instance for tests."""
    return FakeAsyncRedis(decode_responses=True)


@pytest.fixture
def memory_store():
    return InMemorySessionStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def static_auth():
    return AuthContext(user_id="static-token", method=STATIC_TOKEN)


@pytest.fixture
def alice_auth():
    return AuthContext(user_id="user-alice", method=COGNITO_JWT, claims={"sub": "user-alice"})


@pytest.fixture
def bob_auth():
    return AuthContext(user_id="user-bob", method=COGNITO_JWT, claims={"sub": "user-bob"})
