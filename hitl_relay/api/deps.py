"""FastAPI dependency providers wiring process-wide components into services.

Tests swap components with ``app.dependency_overrides`` on the ``get_*``
providers re-exported here.
"""

from fastapi import Depends, HTTPException

from hitl_relay.core.config import Settings, get_settings
from hitl_relay.core.exceptions import RelayError
from hitl_relay.outbound.dispatcher import OutboundDispatcher, get_dispatcher
from hitl_relay.routing.strategy import RoutingStrategy, get_routing_strategy
from hitl_relay.services.link_service import LinkService, NotifyService
from hitl_relay.services.question_service import QuestionService
from hitl_relay.services.retrieval_service import ReplyRetrievalService
from hitl_relay.services.webhook_service import WebhookService
from hitl_relay.sessions.store import SessionStore, get_session_store

__all__ = [
    "get_dispatcher",
    "get_link_service",
    "get_notify_service",
    "get_question_service",
    "get_retrieval_service",
    "get_routing_strategy",
    "get_session_store",
    "get_webhook_service",
    "relay_http_error",
]


def relay_http_error(exc: RelayError) -> HTTPException:
    """Translate a domain error into the HTTP error body agents see."""
    return HTTPException(
        status_code=exc.status_code,
        detail={"code": exc.code, "message": str(exc)},
    )


def get_question_service(
    store: SessionStore = Depends(get_session_store),
    routing: RoutingStrategy = Depends(get_routing_strategy),
    dispatcher: OutboundDispatcher = Depends(get_dispatcher),
) -> QuestionService:
    return QuestionService(store, routing, dispatcher)


def get_retrieval_service(
    store: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
) -> ReplyRetrievalService:
    return ReplyRetrievalService(store, tick=settings.poll_tick_sec)


def get_webhook_service(
    store: SessionStore = Depends(get_session_store),
    routing: RoutingStrategy = Depends(get_routing_strategy),
    settings: Settings = Depends(get_settings),
) -> WebhookService:
    return WebhookService(
        store,
        routing,
        query_keywords=settings.query_keywords,
        link_code_ttl_sec=settings.link_code_ttl_sec,
    )


def get_link_service(routing: RoutingStrategy = Depends(get_routing_strategy)) -> LinkService:
    return LinkService(routing)


def get_notify_service(
    routing: RoutingStrategy = Depends(get_routing_strategy),
    dispatcher: OutboundDispatcher = Depends(get_dispatcher),
) -> NotifyService:
    return NotifyService(routing, dispatcher.notifier)
