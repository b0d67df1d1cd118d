"""Scripted model clients for offline development and tests.

The router never calls a real model here; each ScriptedClient plays back a
list of canned Steps, one per invoke(), so routing behaviour is
deterministic and reproducible:

    builder = ScriptedBuilder({
        "gemini/gemini-2.0-flash": [Step.fail(ProviderRateLimitError("429"))],
        "gemini/gemini-2.5-pro": [Step.stream(["Hel", "lo"])],
    })
    router = Router.from_settings(settings, client_builder=builder)

When a client runs out of steps it repeats its last one. Models with no
script answer with DEFAULT_REPLY.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum

import structlog

from ai_router.model_router.types import ImageAttachment, MessageTurn, ModelDescriptor
from ai_router.providers.base import ModelClient, ProviderReply

log = structlog.get_logger(__name__)

DEFAULT_REPLY = "Hello! This is a scripted model running in offline mode."


class StepKind(StrEnum):
    TEXT = "text"
    STREAM = "stream"
    FAIL = "fail"
    HANG = "hang"
    TRUNCATE = "truncate"


@dataclass(frozen=True)
class Step:
    """One canned response.

    Attributes:
        kind: What the client does on this invoke
        text: Full reply for TEXT
        chunks: Chunks yielded for STREAM and TRUNCATE
        error: Raised by FAIL (at invoke) or TRUNCATE (after the chunks)
        delay: Seconds to sleep before replying (and between chunks)
    """

    kind: StepKind
    text: str = ""
    chunks: tuple[str, ...] = ()
    error: Exception | None = None
    delay: float = 0.0

    @classmethod
    def reply(cls, text: str, *, delay: float = 0.0) -> Step:
        return cls(StepKind.TEXT, text=text, delay=delay)

    @classmethod
    def stream(cls, chunks: Sequence[str], *, delay: float = 0.0) -> Step:
        return cls(StepKind.STREAM, chunks=tuple(chunks), delay=delay)

    @classmethod
    def empty(cls) -> Step:
        """A stream that ends without producing anything."""
        return cls(StepKind.STREAM)

    @classmethod
    def fail(cls, error: Exception, *, delay: float = 0.0) -> Step:
        return cls(StepKind.FAIL, error=error, delay=delay)

    @classmethod
    def hang(cls) -> Step:
        """Never answers; only a timeout or cancellation ends the call."""
        return cls(StepKind.HANG)

    @classmethod
    def truncate(cls, chunks: Sequence[str], error: Exception) -> Step:
        return cls(StepKind.TRUNCATE, chunks=tuple(chunks), error=error)


class ScriptedClient(ModelClient):
    """ModelClient that plays back Steps in order."""

    def __init__(self, descriptor: ModelDescriptor, steps: Sequence[Step] = ()) -> None:
        super().__init__(descriptor)
        self._steps = list(steps) or [Step.reply(DEFAULT_REPLY)]
        self.invocations: list[tuple[tuple[MessageTurn, ...], tuple[ImageAttachment, ...]]] = []
        self.closed = False

    def _next_step(self) -> Step:
        index = min(len(self.invocations) - 1, len(self._steps) - 1)
        return self._steps[index]

    async def invoke(
        self,
        messages: Sequence[MessageTurn],
        attachments: Sequence[ImageAttachment] = (),
    ) -> ProviderReply:
        self.invocations.append((tuple(messages), tuple(attachments)))
        step = self._next_step()
        log.debug("scripted_client.invoke", model_id=self.model_id, step=step.kind.value)

        if step.kind is StepKind.HANG:
            await asyncio.Event().wait()
        if step.delay:
            await asyncio.sleep(step.delay)
        if step.kind is StepKind.FAIL:
            if step.error is None:
                raise ValueError("a FAIL step needs an error to raise")
            raise step.error
        if step.kind is StepKind.TEXT:
            return step.text
        return self._play(step)

    async def _play(self, step: Step) -> AsyncIterator[str]:
        for chunk in step.chunks:
            if step.delay:
                await asyncio.sleep(step.delay)
            yield chunk
        if step.kind is StepKind.TRUNCATE and step.error is not None:
            raise step.error

    async def aclose(self) -> None:
        self.closed = True

    @property
    def call_count(self) -> int:
        return len(self.invocations)


@dataclass
class ScriptedBuilder:
    """ClientBuilder producing ScriptedClients, with construction bookkeeping.

    Attributes:
        scripts: Steps per model id
        construction_delay: Seconds each construction takes
        construction_errors: Model ids whose construction raises this error
    """

    scripts: Mapping[str, Sequence[Step]] = field(default_factory=dict)
    construction_delay: float = 0.0
    construction_errors: dict[str, Exception] = field(default_factory=dict)
    constructions: defaultdict[str, int] = field(default_factory=lambda: defaultdict(int))
    clients: dict[str, ScriptedClient] = field(default_factory=dict)

    async def __call__(self, descriptor: ModelDescriptor) -> ScriptedClient:
        self.constructions[descriptor.model_id] += 1
        if self.construction_delay:
            await asyncio.sleep(self.construction_delay)
        error = self.construction_errors.get(descriptor.model_id)
        if error is not None:
            raise error
        client = ScriptedClient(descriptor, self.scripts.get(descriptor.model_id, ()))
        self.clients[descriptor.model_id] = client
        return client

    def calls(self, model_id: str) -> int:
        """Invocations received by ``model_id``'s client (0 if never built)."""
        client = self.clients.get(model_id)
        return client.call_count if client is not None else 0
