"""Request ID propagation for agent calls and webhook deliveries.

Every response carries ``X-Request-ID``; an inbound value (e.g. set by the
local bridge or the load balancer) is echoed back unchanged.
"""

import uuid

from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id
from fastapi import FastAPI

REQUEST_ID_HEADER = "X-Request-ID"


def _new_request_id() -> str:
    return str(uuid.uuid4())


def setup_correlation_middleware(app: FastAPI) -> None:
    app.add_middleware(
        CorrelationIdMiddleware,
        header_name=REQUEST_ID_HEADER,
        generator=_new_request_id,
        validator=None,  # bridges send non-UUID ids
        transformer=lambda value: value,
    )


def get_correlation_id() -> str | None:
    """Request ID of the current request, or None outside a request."""
    return correlation_id.get(None)


__all__ = ["REQUEST_ID_HEADER", "get_correlation_id", "setup_correlation_middleware"]
