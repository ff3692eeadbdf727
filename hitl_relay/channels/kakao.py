"""Kakao i Open Builder skill payloads: inbound field extraction and v2.0 responses."""

from dataclasses import dataclass
from typing import Any

SKILL_VERSION = "2.0"


@dataclass(frozen=True)
class InboundMessage:
    channel_user_key: str | None
    text: str


def _dig(payload: Any, *path: str) -> Any:
    node = payload
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _first_str(*candidates: Any) -> str | None:
    for value in candidates:
        if isinstance(value, str) and value:
            return value
    return None


def parse_inbound(payload: Any) -> InboundMessage:
    """Extract the chat identity and utterance from a skill request.

    Identity priority: ``userRequest.user.properties.appUserId`` (Kakao Sync),
    then ``userRequest.user.id`` (skill default), then top-level ``user_key``
    (flat test payloads). Text: ``userRequest.utterance``, then top-level ``text``.
    """
    channel_user_key = _first_str(
        _dig(payload, "userRequest", "user", "properties", "appUserId"),
        _dig(payload, "userRequest", "user", "id"),
        _dig(payload, "user_key"),
    )
    utterance = _dig(payload, "userRequest", "utterance")
    if not isinstance(utterance, str):
        utterance = _dig(payload, "text")
    return InboundMessage(
        channel_user_key=channel_user_key,
        text=utterance if isinstance(utterance, str) else "",
    )


def simple_text(text: str) -> dict:
    return {
        "version": SKILL_VERSION,
        "template": {"outputs": [{"simpleText": {"text": text}}]},
    }


def text_with_quick_replies(text: str, choices: list[str] | None) -> dict:
    response = simple_text(text)
    if choices:
        response["template"]["quickReplies"] = [
            {"label": choice, "action": "message", "messageText": choice}
            for choice in choices
        ]
    return response
