"""Per-model in-flight limits with a bounded waiting queue.

A ModelDescriptor may declare ``max_concurrency``. Requests beyond it wait
in a queue of at most ``max_queue`` entries; once the queue is full the
next request fails fast with ModelOverloadedError, which the router treats
like a rate-limit signal and falls back. Models without a limit pass
straight through. There is no global throttle.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import structlog

from ai_router.model_router.errors import ModelOverloadedError
from ai_router.model_router.types import ModelDescriptor

log = structlog.get_logger(__name__)


@dataclass
class _GateState:
    """Semaphore and queue depth for one model."""

    limit: int
    max_queue: int
    semaphore: asyncio.Semaphore = field(init=False)
    waiting: int = 0
    in_flight: int = 0

    def __post_init__(self) -> None:
        self.semaphore = asyncio.Semaphore(self.limit)


class ConcurrencyGate:
    """Holds one gate per model that declares a concurrency limit."""

    def __init__(self, descriptors: list[ModelDescriptor] | tuple[ModelDescriptor, ...]) -> None:
        self._gates: dict[str, _GateState] = {
            d.model_id: _GateState(limit=d.max_concurrency, max_queue=d.max_queue)
            for d in descriptors
            if d.max_concurrency is not None
        }

    @asynccontextmanager
    async def slot(self, model_id: str) -> AsyncIterator[None]:
        """Hold one in-flight slot for ``model_id`` for the duration of the block.

        Raises:
            ModelOverloadedError: All slots busy and the waiting queue is full
        """
        gate = self._gates.get(model_id)
        if gate is None:
            yield
            return

        if gate.semaphore.locked() and gate.waiting >= gate.max_queue:
            log.warning(
                "concurrency_gate.queue_full",
                model_id=model_id,
                limit=gate.limit,
                waiting=gate.waiting,
            )
            raise ModelOverloadedError(
                f"{model_id} is at its concurrency limit ({gate.limit}) with a full queue",
                model_id=model_id,
            )

        gate.waiting += 1
        try:
            await gate.semaphore.acquire()
        finally:
            gate.waiting -= 1

        gate.in_flight += 1
        try:
            yield
        finally:
            gate.in_flight -= 1
            gate.semaphore.release()

    def usage(self, model_id: str) -> tuple[int, int]:
        """Return ``(in_flight, waiting)`` for a model; ``(0, 0)`` if unlimited."""
        gate = self._gates.get(model_id)
        if gate is None:
            return (0, 0)
        return (gate.in_flight, gate.waiting)
