"""Incremental relay of provider output with integrity checks.

Providers answer with either the full text or an async iterator of chunks.
StreamRelay consumes one attempt's reply, forwards every chunk to the
caller's sink as it arrives, and keeps a buffer of what was sent. When the
attempt ends it enforces the integrity rule: a reply with no usable
(non-whitespace) content, or one that breaks after partial output, raises
StreamIntegrityError so the router can fall back to the next candidate.

If an attempt fails after chunks were forwarded, the router tells the sink
to ``reset()`` before the next candidate starts writing. Consumers discard
what they received so far on a RESET event.

Event types:
- token: A chunk of model output
- reset: Discard previously received tokens (fallback after partial output)
- done: Routing finished; ``data`` holds the full content
- error: Routing failed; ``data`` holds the user-facing message
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Protocol

import structlog

from ai_router.model_router.errors import (
    ProviderError,
    ProviderTransportError,
    StreamIntegrityError,
)
from ai_router.providers.base import ProviderReply

log = structlog.get_logger(__name__)


class EventType(StrEnum):
    """Event types delivered to streaming consumers."""
    TOKEN = "token"
    RESET = "reset"
    DONE = "done"
    ERROR = "error"


@dataclass
class StreamEvent:
    """
    A single event in a routed output stream.

    Attributes:
        type: Event type (token, reset, done, error)
        data: Event payload
        timestamp: ISO 8601 timestamp
        metadata: Additional context (model_id, request_id, ...)
    """
    type: EventType
    data: str = ""
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "type": self.type,
            "data": self.data,
            "timestamp": self.timestamp,
            "metadata": self.metadata,
        }

    def to_sse(self) -> str:
        """Format as a Server-Sent Events message."""
        return f"event: {self.type}\ndata: {json.dumps(self.to_dict())}\n\n"


class StreamSink(Protocol):
    """Receiver of incremental output for one route call."""

    async def write(self, chunk: str, *, model_id: str) -> None: ...

    async def reset(self, *, model_id: str) -> None: ...


class QueueSink:
    """StreamSink backed by a bounded asyncio.Queue of StreamEvents.

    ``write`` awaits when the queue is full, so a slow consumer applies
    backpressure to the provider stream instead of growing memory.
    """

    def __init__(self, maxsize: int = 256) -> None:
        if maxsize < 1:
            raise ValueError("QueueSink must be bounded (maxsize >= 1)")
        self.queue: asyncio.Queue[StreamEvent] = asyncio.Queue(maxsize=maxsize)

    async def write(self, chunk: str, *, model_id: str) -> None:
        await self.queue.put(StreamEvent(EventType.TOKEN, chunk, metadata={"model_id": model_id}))

    async def reset(self, *, model_id: str) -> None:
        await self.queue.put(StreamEvent(EventType.RESET, metadata={"model_id": model_id}))

    async def close(self, event: StreamEvent) -> None:
        await self.queue.put(event)


class StreamRelay:
    """Consumes one attempt's reply and forwards it to an optional sink."""

    def __init__(self, model_id: str, sink: StreamSink | None = None) -> None:
        self.model_id = model_id
        self._sink = sink
        self._buffer: list[str] = []
        self.forwarded_chars = 0

    @property
    def partial(self) -> bool:
        """True once any chunk has reached the sink."""
        return self.forwarded_chars > 0

    async def _forward(self, chunk: str) -> None:
        self._buffer.append(chunk)
        if self._sink is not None:
            await self._sink.write(chunk, model_id=self.model_id)
            self.forwarded_chars += len(chunk)

    async def consume(self, reply: ProviderReply) -> str:
        """Relay ``reply`` and return the full content.

        Raises:
            StreamIntegrityError: No usable content, or the stream broke
                after partial output
            ProviderError: The stream failed before producing anything
        """
        if isinstance(reply, str):
            if reply.strip():
                await self._forward(reply)
            return self._finish()

        try:
            await self._drain(reply)
        finally:
            aclose = getattr(reply, "aclose", None)
            if aclose is not None:
                await aclose()
        return self._finish()

    async def _drain(self, chunks: AsyncIterator[str]) -> None:
        try:
            async for chunk in chunks:
                if chunk:
                    await self._forward(chunk)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            received = sum(len(c) for c in self._buffer)
            if received:
                log.warning(
                    "stream_relay.truncated",
                    model_id=self.model_id,
                    chars_received=received,
                    error_type=type(exc).__name__,
                )
                raise StreamIntegrityError(
                    f"{self.model_id} stream broke after {received} chars",
                    model_id=self.model_id,
                    truncated=True,
                    chars_received=received,
                ) from exc
            if isinstance(exc, ProviderError):
                raise
            raise ProviderTransportError(
                f"{self.model_id} stream failed ({type(exc).__name__}): {exc}",
                model_id=self.model_id,
            ) from exc

    def _finish(self) -> str:
        content = "".join(self._buffer)
        if not content.strip():
            raise StreamIntegrityError(
                f"{self.model_id} returned no content",
                model_id=self.model_id,
                chars_received=len(content),
            )
        return content
