"""Provider seam: the only thing the router knows about a backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ai_router.model_router.types import ImageAttachment, MessageTurn, ModelDescriptor

ProviderReply = str | AsyncIterator[str]


class ModelClient(ABC):
    """A handle on one backend model.

    ``invoke`` returns either the full response text or an async iterator of
    text chunks. Failures are raised as ``ProviderError`` subclasses
    (timeout, rate limit, transport); anything else is treated as a
    transport error by the router.
    """

    def __init__(self, descriptor: ModelDescriptor) -> None:
        self.descriptor = descriptor

    @property
    def model_id(self) -> str:
        return self.descriptor.model_id

    @abstractmethod
    async def invoke(
        self,
        messages: Sequence[MessageTurn],
        attachments: Sequence[ImageAttachment] = (),
    ) -> ProviderReply:
        """Send a generation request to the backend."""
        ...

    async def aclose(self) -> None:
        """Release resources held by the client. Default: nothing to release."""


ClientBuilder = Callable[["ModelDescriptor"], Awaitable[ModelClient]]
