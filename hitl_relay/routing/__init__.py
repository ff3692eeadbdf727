"""Chat identity routing: strategies, user directory and link codes."""

from hitl_relay.routing.directory import UserDirectory
from hitl_relay.routing.link_codes import LinkCodeStore
from hitl_relay.routing.strategy import (
    GlobalRouting,
    PerUserRouting,
    Resolution,
    ResolutionKind,
    RoutingStrategy,
    get_routing_strategy,
    init_routing_strategy,
)

__all__ = [
    "GlobalRouting",
    "LinkCodeStore",
    "PerUserRouting",
    "Resolution",
    "ResolutionKind",
    "RoutingStrategy",
    "UserDirectory",
    "get_routing_strategy",
    "init_routing_strategy",
]
