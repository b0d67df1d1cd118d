"""Lazy, singleflight construction of model clients.

The factory builds at most one client per model id. The first caller for
an unseen id starts the construction as a task; concurrent callers await
that same task instead of building a duplicate. The task is shielded, so
one waiter being cancelled does not abort construction for the others.

Construction failures (missing credentials, unreachable provider during
setup, construction timeout) are remembered for a cool-down window. Calls
during the window fail immediately with ModelUnavailableError; the first
call after it expires retries construction.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from ai_router.model_router.errors import ModelUnavailableError

if TYPE_CHECKING:
    from ai_router.model_router.registry import ModelRegistry
    from ai_router.model_router.types import ModelDescriptor
    from ai_router.providers.base import ClientBuilder, ModelClient

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class _CachedFailure:
    error: str
    until: float


class ModelFactory:
    """Creates and caches one ModelClient per model id."""

    def __init__(
        self,
        registry: ModelRegistry,
        builder: ClientBuilder,
        *,
        construction_timeout: float = 10.0,
        failure_cooldown: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the factory.

        Args:
            registry: Source of descriptors handed to the builder
            builder: Async callable building a client from a descriptor
            construction_timeout: Upper bound on one construction, in seconds
            failure_cooldown: Seconds a construction failure is cached
            clock: Monotonic time source (injectable for tests)
        """
        self._registry = registry
        self._builder = builder
        self._construction_timeout = construction_timeout
        self._failure_cooldown = failure_cooldown
        self._clock = clock

        self._clients: dict[str, ModelClient] = {}
        self._pending: dict[str, asyncio.Task[ModelClient]] = {}
        self._failures: dict[str, _CachedFailure] = {}
        self._constructions = 0

    async def get_or_create(self, model_id: str) -> ModelClient:
        """Return the client for ``model_id``, building it on first use.

        Raises:
            ModelUnavailableError: Construction failed now or within the
                cool-down window
            ConfigurationError: ``model_id`` is not in the registry
        """
        client = self._clients.get(model_id)
        if client is not None:
            return client

        failure = self._failures.get(model_id)
        if failure is not None:
            remaining = failure.until - self._clock()
            if remaining > 0:
                raise ModelUnavailableError(
                    f"{model_id} unavailable (cooling down): {failure.error}",
                    model_id=model_id,
                    retry_after=remaining,
                )
            del self._failures[model_id]

        task = self._pending.get(model_id)
        if task is None:
            descriptor = self._registry.get(model_id)
            task = asyncio.get_running_loop().create_task(self._construct(descriptor))
            self._pending[model_id] = task
            task.add_done_callback(lambda done, key=model_id: self._on_done(key, done))
        else:
            log.debug("model_factory.awaiting_inflight", model_id=model_id)

        return await asyncio.shield(task)

    async def _construct(self, descriptor: ModelDescriptor) -> ModelClient:
        model_id = descriptor.model_id
        self._constructions += 1
        started = self._clock()
        try:
            client = await asyncio.wait_for(
                self._builder(descriptor),
                timeout=self._construction_timeout,
            )
        except Exception as exc:
            if isinstance(exc, asyncio.TimeoutError):
                reason = f"construction timed out after {self._construction_timeout}s"
            else:
                reason = f"{type(exc).__name__}: {exc}"
            self._failures[model_id] = _CachedFailure(
                error=reason,
                until=self._clock() + self._failure_cooldown,
            )
            log.warning(
                "model_factory.construction_failed",
                model_id=model_id,
                error=reason,
                cooldown_seconds=self._failure_cooldown,
            )
            raise ModelUnavailableError(
                f"Could not create client for {model_id}: {reason}",
                model_id=model_id,
                retry_after=self._failure_cooldown,
            ) from exc

        self._clients[model_id] = client
        log.info(
            "model_factory.client_created",
            model_id=model_id,
            elapsed_ms=round((self._clock() - started) * 1000, 1),
        )
        return client

    def _on_done(self, model_id: str, task: asyncio.Task[ModelClient]) -> None:
        self._pending.pop(model_id, None)
        # Mark the exception retrieved even if every waiter was cancelled.
        if not task.cancelled():
            task.exception()

    def evict(self, model_id: str) -> ModelClient | None:
        """Drop a cached client or cached failure so the next call rebuilds."""
        self._failures.pop(model_id, None)
        return self._clients.pop(model_id, None)

    def clear(self) -> None:
        """Forget every cached client and failure without closing anything."""
        self._clients.clear()
        self._failures.clear()

    async def aclose(self) -> None:
        """Close every cached client and forget all state."""
        clients = list(self._clients.values())
        self._clients.clear()
        self._failures.clear()
        for client in clients:
            await client.aclose()

    def cached_ids(self) -> tuple[str, ...]:
        return tuple(self._clients)

    @property
    def construction_count(self) -> int:
        """Number of builder invocations so far."""
        return self._constructions
