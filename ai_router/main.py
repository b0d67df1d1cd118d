"""
Process startup for applications embedding the router.

Call ``create_router()`` once at process start. It configures structured
logging from settings (before any log calls) and returns a wired Router:

    router = create_router()
    result = await router.route(request)
    ...
    await router.aclose()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from ai_router.config import Settings, get_settings
from ai_router.model_router import Router
from ai_router.telemetry import configure_logging

if TYPE_CHECKING:
    from ai_router.providers.base import ClientBuilder

log = structlog.get_logger(__name__)


def create_router(
    settings: Settings | None = None,
    client_builder: ClientBuilder | None = None,
) -> Router:
    """Configure logging and build the Router.

    Args:
        settings: Application settings (cached ``get_settings()`` if omitted)
        client_builder: Builds a ModelClient per descriptor; LiteLLM if omitted

    Returns:
        Router wired from ``settings``
    """
    settings = settings or get_settings()

    configure_logging(
        json_logs=settings.json_logs or settings.is_prod,
        log_level="DEBUG" if settings.debug else settings.log_level,
    )

    log.info(
        "app.starting",
        environment=settings.environment.value,
        strategy=settings.selection_strategy.value,
        models=len(settings.models),
    )
    return Router.from_settings(settings, client_builder)
