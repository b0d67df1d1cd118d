"""LiteLLM-backed model client.

LiteLLM gives one call signature for Gemini, OpenAI, Anthropic, Ollama and
the rest, so a ModelDescriptor's ``model_id`` is simply a LiteLLM model
string ("gemini/gemini-2.5-pro", "ollama/qwen2.5:7b", ...).

This module:
- Builds OpenAI-format messages, attaching images to the last user turn
- Calls litellm.acompletion(), streaming when the descriptor allows it
- Normalizes LiteLLM exceptions to the router's ProviderError taxonomy,
  including errors raised mid-stream
- Checks credentials at construction so a misconfigured provider fails in
  the factory (and is cooled down) rather than on every request

There are no retries here: the router's fallback chain is the retry policy.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from typing import TYPE_CHECKING, Any

import litellm
import structlog

from ai_router.model_router.errors import (
    ModelUnavailableError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    ProviderTransportError,
)
from ai_router.providers.base import ClientBuilder, ModelClient, ProviderReply

if TYPE_CHECKING:
    from ai_router.config import Settings
    from ai_router.model_router.types import ImageAttachment, MessageTurn, ModelDescriptor

log = structlog.get_logger(__name__)


def _translate(exc: Exception, model_id: str) -> ProviderError:
    """Map a LiteLLM (or transport) exception to the routing taxonomy."""
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, litellm.exceptions.RateLimitError):
        return ProviderRateLimitError(f"Rate limit from {model_id}: {exc}", model_id=model_id)
    if isinstance(exc, litellm.exceptions.Timeout):
        return ProviderTimeoutError(f"Upstream timeout from {model_id}: {exc}", model_id=model_id)
    if isinstance(exc, litellm.exceptions.AuthenticationError):
        return ModelUnavailableError(f"Authentication failed for {model_id}: {exc}", model_id=model_id)
    return ProviderTransportError(
        f"{model_id} call failed ({type(exc).__name__}): {exc}",
        model_id=model_id,
    )


def build_messages(
    messages: Sequence[MessageTurn],
    attachments: Sequence[ImageAttachment] = (),
) -> list[dict[str, Any]]:
    """Convert turns and images into OpenAI chat format.

    Images are attached to the last user turn; if there is none, a user
    turn carrying only the images is appended.
    """
    payload: list[dict[str, Any]] = [
        {"role": turn.role, "content": turn.text} for turn in messages
    ]
    if not attachments:
        return payload

    image_parts = [
        {"type": "image_url", "image_url": {"url": image.as_url()}} for image in attachments
    ]
    for entry in reversed(payload):
        if entry["role"] == "user":
            entry["content"] = [{"type": "text", "text": entry["content"]}, *image_parts]
            return payload

    payload.append({"role": "user", "content": image_parts})
    return payload


class LiteLLMClient(ModelClient):
    """ModelClient that proxies one model id through LiteLLM."""

    def __init__(
        self,
        descriptor: ModelDescriptor,
        *,
        api_base: str | None = None,
        api_key: str | None = None,
    ) -> None:
        super().__init__(descriptor)
        self._api_base = api_base
        self._api_key = api_key

    def check_credentials(self) -> None:
        """Fail fast when the provider's credentials are missing.

        Raises:
            ModelUnavailableError: No explicit key and LiteLLM reports missing
                environment keys for this model
        """
        if self._api_key:
            return
        env = litellm.validate_environment(model=self.model_id)
        if not env.get("keys_in_environment", False):
            raise ModelUnavailableError(
                f"Missing credentials for {self.model_id}: {env.get('missing_keys', [])}",
                model_id=self.model_id,
            )

    async def invoke(
        self,
        messages: Sequence[MessageTurn],
        attachments: Sequence[ImageAttachment] = (),
    ) -> ProviderReply:
        """Send a completion request.

        Returns:
            An async iterator of text deltas when the model streams,
            otherwise the full response text

        Raises:
            ProviderRateLimitError, ProviderTimeoutError,
            ProviderTransportError, ModelUnavailableError
        """
        stream = self.descriptor.streaming
        kwargs: dict[str, Any] = {}
        if self._api_base:
            kwargs["api_base"] = self._api_base
        if self._api_key:
            kwargs["api_key"] = self._api_key

        log.debug(
            "litellm_client.request",
            model=self.model_id,
            message_count=len(messages),
            image_count=len(attachments),
            stream=stream,
        )

        try:
            response = await litellm.acompletion(
                model=self.model_id,
                messages=build_messages(messages, attachments),
                stream=stream,
                **kwargs,
            )
        except Exception as exc:
            raise _translate(exc, self.model_id) from exc

        if stream:
            return self._iter_deltas(response)

        usage = getattr(response, "usage", None)
        if usage:
            log.info(
                "litellm_client.completion_done",
                model=self.model_id,
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
            )
        return self.extract_text(response)

    async def _iter_deltas(self, response: Any) -> AsyncIterator[str]:
        try:
            async for chunk in response:
                try:
                    delta = chunk.choices[0].delta.content
                except (AttributeError, IndexError):
                    delta = None
                if delta:
                    yield delta
        except Exception as exc:
            raise _translate(exc, self.model_id) from exc

    @staticmethod
    def extract_text(response: Any) -> str:
        """Extract the assistant text from a non-streamed completion."""
        try:
            return response.choices[0].message.content or ""
        except (AttributeError, IndexError, KeyError):
            return ""


def litellm_client_builder(settings: Settings) -> ClientBuilder:
    """Return the factory builder that creates LiteLLM clients from settings."""
    api_key = settings.litellm_api_key.get_secret_value() or None

    async def build(descriptor: ModelDescriptor) -> ModelClient:
        client = LiteLLMClient(
            descriptor,
            api_base=settings.litellm_base_url,
            api_key=api_key,
        )
        client.check_credentials()
        return client

    return build
