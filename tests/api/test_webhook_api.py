"""Tests for POST /webhook/kakao: always 200 with a skill v2.0 body."""

import pytest

pytestmark = pytest.mark.integration


def test_webhook_is_unauthenticated_and_always_200(client, kakao):
    response = client.post("/webhook/kakao", json=kakao.payload("stranger", "hello"))

    assert response.status_code == 200
    assert response.json()["version"] == "2.0"
    assert "not permitted" in kakao.text(response.json())


def test_malformed_body_still_answers(client, kakao):
    response = client.post(
        "/webhook/kakao",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 200
    assert "identify" in kakao.text(response.json())


def test_query_keyword_shows_choices(client, auth_headers, kakao, fixed_user_key):
    client.post(
        "/v1/sessions/S1/questions",
        json={"text": "Deploy?", "choices": ["Yes", "No"], "severity": "INFO"},
        headers=auth_headers,
    )

    response = client.post("/webhook/kakao", json=kakao.payload(fixed_user_key, "pending"))

    body = response.json()
    assert kakao.text(body) == "Deploy?"
    assert [q["label"] for q in body["template"]["quickReplies"]] == ["Yes", "No"]
    poll = client.get("/v1/sessions/S1/replies?wait_sec=0", headers=auth_headers).json()
    assert poll["status"] == "WAITING_USER"


def test_no_pending_question(client, kakao, fixed_user_key):
    response = client.post("/webhook/kakao", json=kakao.payload(fixed_user_key, "yes"))
    assert "no pending question" in kakao.text(response.json())


def test_response_carries_request_id(client, kakao):
    response = client.post(
        "/webhook/kakao",
        json=kakao.payload("stranger", "hi"),
        headers={"X-Request-ID": "kakao-req-1"},
    )
    assert response.headers["X-Request-ID"] == "kakao-req-1"
