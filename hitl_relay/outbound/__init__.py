"""Outbound delivery to the chat user."""

from hitl_relay.outbound.dispatcher import OutboundDispatcher, get_dispatcher, init_dispatcher
from hitl_relay.outbound.notifier import (
    DisabledNotifier,
    HttpNotifier,
    NotificationDelivery,
    Notifier,
    QuestionDelivery,
    SendResult,
)

__all__ = [
    "DisabledNotifier",
    "HttpNotifier",
    "NotificationDelivery",
    "Notifier",
    "OutboundDispatcher",
    "QuestionDelivery",
    "SendResult",
    "get_dispatcher",
    "init_dispatcher",
]
