"""Tests for POST /v1/link-chatbot and POST /v1/notify."""

import pytest

from hitl_relay.outbound.notifier import SendResult

pytestmark = pytest.mark.integration


def _issue_code(client, kakao, channel_user_key: str) -> str:
    text = kakao.text(client.post("/webhook/kakao", json=kakao.payload(channel_user_key, "hi")).json())
    return text.split("Link code: ")[1].split()[0]


# ──────────────────────────────────────────────────────────────────────────────
# POST /v1/link-chatbot
# ──────────────────────────────────────────────────────────────────────────────


def test_link_with_jwt_caller(multi_user_client, multi_user_app, login_as, kakao):
    code = _issue_code(multi_user_client, kakao, "kakao-a")
    login_as(multi_user_app, "user-alice")

    response = multi_user_client.post("/v1/link-chatbot", json={"link_code": code})

    assert response.status_code == 200
    assert response.json()["ok"] is True
    assert response.json()["chatbot_user_id"] == "kakao-a"


def test_link_code_is_single_use(multi_user_client, multi_user_app, login_as, kakao):
    code = _issue_code(multi_user_client, kakao, "kakao-a")
    login_as(multi_user_app, "user-alice")

    multi_user_client.post("/v1/link-chatbot", json={"link_code": code})
    response = multi_user_client.post("/v1/link-chatbot", json={"link_code": code})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_CODE"


def test_link_for_other_user_forbidden(multi_user_client, multi_user_app, login_as, kakao):
    code = _issue_code(multi_user_client, kakao, "kakao-a")
    login_as(multi_user_app, "user-alice")

    response = multi_user_client.post(
        "/v1/link-chatbot", json={"link_code": code, "target_user_id": "user-bob"}
    )

    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "FORBIDDEN"


def test_static_token_needs_target(multi_user_client, auth_headers, kakao):
    code = _issue_code(multi_user_client, kakao, "kakao-a")

    missing = multi_user_client.post("/v1/link-chatbot", json={"link_code": code}, headers=auth_headers)
    linked = multi_user_client.post(
        "/v1/link-chatbot",
        json={"link_code": code, "target_user_id": "user-ops"},
        headers=auth_headers,
    )

    assert missing.status_code == 400
    assert missing.json()["detail"]["code"] == "BAD_REQUEST"
    assert linked.status_code == 200


def test_missing_link_code(multi_user_client, auth_headers):
    response = multi_user_client.post("/v1/link-chatbot", json={}, headers=auth_headers)
    assert response.status_code == 422


def test_linking_unavailable_in_single_user_mode(client, auth_headers):
    response = client.post(
        "/v1/link-chatbot",
        json={"link_code": "ABCDEF", "target_user_id": "user-ops"},
        headers=auth_headers,
    )

    assert response.status_code == 503
    assert response.json()["detail"]["code"] == "LINKING_UNAVAILABLE"


# ──────────────────────────────────────────────────────────────────────────────
# POST /v1/notify
# ──────────────────────────────────────────────────────────────────────────────


def test_notify_delivers(client, auth_headers, notifier, fixed_user_key):
    response = client.post(
        "/v1/notify",
        json={"session_id": "S1", "text": "Build green", "severity": "INFO"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert response.json() == {"ok": True, "provider_message_id": "provider-1"}
    assert notifier.notifications[0].channel_user_key == fixed_user_key


def test_notify_delivery_failure_is_502(client, auth_headers, notifier):
    notifier.result = SendResult(ok=False, error_code="UPSTREAM_UNAVAILABLE", error_message="down")

    response = client.post("/v1/notify", json={"session_id": "S1", "text": "hi"}, headers=auth_headers)

    assert response.status_code == 502
    assert response.json()["error_code"] == "UPSTREAM_UNAVAILABLE"


def test_notify_disabled_sender(client, auth_headers, notifier):
    notifier.enabled = False

    response = client.post("/v1/notify", json={"session_id": "S1", "text": "hi"}, headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["ok"] is True
    assert notifier.notifications == []


def test_notify_forbidden_target(multi_user_client, multi_user_app, login_as):
    login_as(multi_user_app, "user-alice")

    response = multi_user_client.post(
        "/v1/notify",
        json={"session_id": "S1", "text": "hi", "target_user_id": "user-bob"},
    )

    assert response.status_code == 403


def test_notify_validation(client, auth_headers):
    response = client.post("/v1/notify", json={"session_id": "S1"}, headers=auth_headers)
    assert response.status_code == 422
