"""
Structured Logging with Structlog.

JSON logs carrying the request and user of each call. Promo codes, admin keys
and artifact bytes are masked before rendering.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from gem_ledger.config import settings

# Event keys whose values never reach the log output in clear
MASKED_KEYS = frozenset({"promo_code", "x_api_key", "session_token", "authorization"})

# Keys carrying binary payloads, logged as their size only
BINARY_KEYS = frozenset({"content"})


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add service name and version to all log entries."""
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    return event_dict


def mask_value(value: object) -> str:
    """Keep the first two characters: ``ARTS25VIP`` -> ``AR*******``."""
    text = str(value)
    if len(text) <= 2:
        return "*" * len(text)
    return text[:2] + "*" * (len(text) - 2)


def redact_sensitive(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask promo codes and credentials, replace artifact bytes by their size."""
    for key in MASKED_KEYS.intersection(event_dict):
        if event_dict[key] is not None:
            event_dict[key] = mask_value(event_dict[key])
    for key in BINARY_KEYS.intersection(event_dict):
        if isinstance(event_dict[key], (bytes, bytearray)):
            event_dict[key] = f"<{len(event_dict[key])} bytes>"
    return event_dict


def setup_logging() -> None:
    """
    Configure structured logging with structlog.

    A conversion logged inside a request renders as:
    {
        "event": "gems_converted",
        "level": "info",
        "timestamp": "2026-10-19T09:00:00.123456Z",
        "logger": "gem_ledger.services.conversion",
        "service": "gem-ledger-api",
        "version": "0.1.0",
        "request_id": "3f1c...",
        "user_id": "user-1",
        "points_used": 200,
        "gems_earned": 2
    }
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        redact_sensitive,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.log_level.upper() == "DEBUG":
        processors.append(structlog.processors.ExceptionRenderer())
    else:
        processors.append(structlog.processors.format_exc_info)

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]


def bind_user(user_id: str) -> None:
    """Attach the authenticated user to every log entry for the rest of the request."""
    structlog.contextvars.bind_contextvars(user_id=user_id)


class log_context:
    """
    Bind request-scoped context for the duration of a block.

    The middleware opens one per request with its request_id. A user bound
    inside the block with bind_user is dropped on exit as well, so nothing
    carries over to the next request served by the same task.
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs

    def __enter__(self) -> None:
        structlog.contextvars.bind_contextvars(**self.context)

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context.keys(), "user_id")
