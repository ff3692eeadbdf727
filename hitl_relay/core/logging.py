"""structlog setup for the relay.

Every entry, whether it comes from structlog or from a stdlib logger
(uvicorn, httpx), goes through the same processor chain:

- request correlation id from asgi-correlation-id
- masking of chat identities and secrets
- JSON rendering, or ConsoleRenderer when running in debug
"""

import logging
import logging.config

import structlog
from asgi_correlation_id.context import correlation_id

# Event keys whose values are never logged in clear
MASKED_FIELDS = frozenset({"channel_user", "channel_user_key", "fixed_user_key", "link_code"})
REDACTED_FIELDS = frozenset({"token", "auth_token", "notifier_token", "authorization"})


def mask_key(key: str) -> str:
    """Mask a chat channel identity for logging."""
    if len(key) <= 10:
        return key[:3] + "***"
    return key[:6] + "***" + key[-4:]


def add_correlation_id(logger, method, event_dict):
    cid = correlation_id.get(None)
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


def mask_sensitive_fields(logger, method, event_dict):
    """Mask identities and drop secrets that slipped into an event."""
    for name in MASKED_FIELDS.intersection(event_dict):
        value = event_dict[name]
        if isinstance(value, str) and "***" not in value:
            event_dict[name] = mask_key(value)
    for name in REDACTED_FIELDS.intersection(event_dict):
        event_dict[name] = "[redacted]"
    return event_dict


def configure_structlog(log_level: str = "INFO", json_logs: bool = True) -> None:
    """Install the processor chain for structlog and the stdlib root logger.

    Must run before the rest of the package is imported: loggers created with
    ``cache_logger_on_first_use`` keep whatever chain existed at first use.
    """
    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_correlation_id,
        mask_sensitive_fields,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "relay": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    renderer,
                ],
                "foreign_pre_chain": pre_chain,
            },
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "formatter": "relay",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {"handlers": ["stdout"], "level": log_level},
        "loggers": {
            "uvicorn.access": {"level": "WARNING"},
            "httpx": {"level": "WARNING"},
            "httpcore": {"level": "WARNING"},
        },
    })

    structlog.configure(
        processors=pre_chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
