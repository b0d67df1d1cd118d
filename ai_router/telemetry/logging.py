"""Structured logging configuration.

Configures structlog over the stdlib logging module. JSON output in
production, a colored console renderer in development.

Every ``Router.route`` call binds a ``request_id`` through
``structlog.contextvars`` so all events emitted while serving the request
(selection, attempts, monitor updates) can be correlated:

    {
        "timestamp": "2026-02-17T10:30:45.123456Z",
        "level": "warning",
        "event": "router.attempt_failed",
        "request_id": "route_0c3f...",
        "model_id": "gemini/gemini-2.5-pro",
        "outcome": "timeout"
    }
"""

from __future__ import annotations

import logging
import sys
import uuid

import structlog
from structlog.types import Processor


def configure_logging(
    *,
    json_logs: bool = False,
    log_level: str = "INFO",
) -> None:
    """Configure structured logging for the process.

    Args:
        json_logs: Use JSON format (True for production, False for dev)
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def new_request_id() -> str:
    """Generate a short correlation id for one routed request."""
    return f"route_{uuid.uuid4().hex[:16]}"


def bind_route_context(request_id: str, **extra: str) -> None:
    """Bind the request id (and any extra fields) to the log context.

    Args:
        request_id: Correlation id for this request
        **extra: Additional string fields, e.g. ``language="zh"``
    """
    structlog.contextvars.bind_contextvars(request_id=request_id, **extra)


def unbind_route_context(*keys: str) -> None:
    """Remove route-scoped keys from the log context."""
    structlog.contextvars.unbind_contextvars("request_id", *keys)


def clear_context() -> None:
    """Clear all context variables (useful for testing)."""
    structlog.contextvars.clear_contextvars()
