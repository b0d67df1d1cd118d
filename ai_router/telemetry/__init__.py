"""Telemetry package: structured logging with per-request correlation."""

from __future__ import annotations

from ai_router.telemetry.logging import (
    bind_route_context,
    clear_context,
    configure_logging,
    new_request_id,
    unbind_route_context,
)

__all__ = [
    "bind_route_context",
    "clear_context",
    "configure_logging",
    "new_request_id",
    "unbind_route_context",
]
