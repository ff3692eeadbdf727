"""API-specific test fixtures.

The relay app is assembled the same way ``create_app`` does it, but with a
test lifespan that wires an in-memory store, fakeredis-backed routing and a
recording notifier inside the TestClient's own event loop.
"""

from contextlib import asynccontextmanager

import pytest
from fakeredis import FakeAsyncRedis
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from hitl_relay.core.auth import COGNITO_JWT, AuthContext, require_auth
from hitl_relay.core.config import get_settings
from hitl_relay.outbound.dispatcher import OutboundDispatcher, init_dispatcher
from hitl_relay.routing.directory import UserDirectory
from hitl_relay.routing.link_codes import LinkCodeStore
from hitl_relay.routing.strategy import GlobalRouting, PerUserRouting, init_routing_strategy
from hitl_relay.sessions.store import InMemorySessionStore, close_session_store, init_session_store

AUTH_TOKEN = "test-relay-token"
FIXED_USER_KEY = "kakao-fixed-user-0001"
AUTH_HEADERS = {"Authorization": f"Bearer {AUTH_TOKEN}"}


def override_auth(user_id: str):
    """Auth override standing in for a verified Cognito JWT."""

    async def _override():
        return AuthContext(user_id=user_id, method=COGNITO_JWT, claims={"sub": user_id})

    return _override


def kakao_payload(user_id: str, utterance: str) -> dict:
    return {
        "intent": {"name": "fallback"},
        "userRequest": {
            "utterance": utterance,
            "user": {"id": user_id, "type": "botUserKey", "properties": {}},
        },
    }


def skill_text(response_json: dict) -> str:
    return response_json["template"]["outputs"][0]["simpleText"]["text"]


@pytest.fixture
def relay_env(monkeypatch):
    """Settings for the API tests: static token, fixed identity, fast polling."""
    monkeypatch.setenv("AUTH_TOKEN", AUTH_TOKEN)
    monkeypatch.setenv("FIXED_USER_KEY", FIXED_USER_KEY)
    monkeypatch.setenv("POLL_TICK_SEC", "0.05")
    monkeypatch.setenv("ROUTING_MODE", "single_user")
    monkeypatch.setenv("SESSION_BACKEND", "memory")
    for name in ("COGNITO_REGION", "COGNITO_USER_POOL_ID", "COGNITO_APP_CLIENT_ID"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


def build_test_app(notifier, multi_user: bool = False) -> FastAPI:
    from hitl_relay.api.routes import api_router
    from hitl_relay.main import generic_exception_handler, http_exception_handler
    from hitl_relay.middleware.correlation import setup_correlation_middleware

    @asynccontextmanager
    async def test_lifespan(app: FastAPI):
        """Test lifespan - wire components in TestClient's event loop."""
        app.state.shutting_down = False
        redis = FakeAsyncRedis(decode_responses=True)
        store = InMemorySessionStore()
        init_session_store(store)

        if multi_user:
            strategy = PerUserRouting(
                UserDirectory(redis),
                LinkCodeStore(redis, ttl=600),
                fixed_user_key=FIXED_USER_KEY,
            )
        else:
            strategy = GlobalRouting(fixed_user_key=FIXED_USER_KEY)
        init_routing_strategy(strategy)

        dispatcher = OutboundDispatcher(notifier)
        init_dispatcher(dispatcher)

        app.state.store = store
        app.state.dispatcher = dispatcher
        yield
        await dispatcher.drain()
        await close_session_store()
        await redis.aclose()

    app = FastAPI(title="HITL Relay - Test Client", lifespan=test_lifespan)
    setup_correlation_middleware(app)

    # Exception handlers (needed for debug_id testing)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router)
    return app


@pytest.fixture
def relay_app(relay_env, notifier):
    return build_test_app(notifier)


@pytest.fixture
def client(relay_app):
    with TestClient(relay_app) as c:
        yield c


@pytest.fixture
def multi_user_app(relay_env, notifier):
    relay_env.setenv("ROUTING_MODE", "multi_user")
    get_settings.cache_clear()
    return build_test_app(notifier, multi_user=True)


@pytest.fixture
def multi_user_client(multi_user_app):
    with TestClient(multi_user_app) as c:
        yield c


@pytest.fixture
def auth_headers():
    return dict(AUTH_HEADERS)


@pytest.fixture
def fixed_user_key():
    return FIXED_USER_KEY


@pytest.fixture
def login_as():
    """Switch the authenticated caller of an app to a JWT user."""

    def _login(app: FastAPI, user_id: str) -> None:
        app.dependency_overrides[require_auth] = override_auth(user_id)

    return _login


@pytest.fixture
def kakao():
    """Builders for skill payloads and response text."""

    class _Kakao:
        payload = staticmethod(kakao_payload)
        text = staticmethod(skill_text)

    return _Kakao
