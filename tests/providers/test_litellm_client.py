"""Tests for the LiteLLM-backed model client.

litellm.acompletion is patched with AsyncMock; no network calls are made.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import litellm
import pytest

from ai_router.model_router import (
    ImageAttachment,
    MessageTurn,
    ModelDescriptor,
    ModelUnavailableError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    ProviderTransportError,
    StreamIntegrityError,
    StreamRelay,
    Tier,
)
from ai_router.providers import LiteLLMClient, litellm_client_builder
from ai_router.providers.litellm_client import build_messages

MODEL = "gemini/gemini-2.0-flash"
MESSAGES = (MessageTurn("system", "Be brief."), MessageTurn("user", "Hi"))


def _descriptor(streaming: bool = False) -> ModelDescriptor:
    return ModelDescriptor(model_id=MODEL, tier=Tier.SIMPLE, streaming=streaming)


def _completion(text: str | None) -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=text))],
        usage=SimpleNamespace(prompt_tokens=12, completion_tokens=3),
    )


def _delta(text: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))])


async def _stream(*deltas, error: Exception | None = None):
    for delta in deltas:
        yield _delta(delta)
    if error is not None:
        raise error


# ------------------------------------------------------------------ #
# Message building
# ------------------------------------------------------------------ #


def test_build_messages_plain():
    assert build_messages(MESSAGES) == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "Hi"},
    ]


def test_build_messages_attaches_images_to_last_user_turn():
    images = (
        ImageAttachment(url="https://example.com/a.png"),
        ImageAttachment(data="aGVsbG8=", mime_type="image/png"),
    )

    payload = build_messages(MESSAGES, images)

    content = payload[-1]["content"]
    assert content[0] == {"type": "text", "text": "Hi"}
    assert content[1]["image_url"]["url"] == "https://example.com/a.png"
    assert content[2]["image_url"]["url"] == "data:image/png;base64,aGVsbG8="


def test_build_messages_without_user_turn_appends_one():
    payload = build_messages((), (ImageAttachment(url="https://example.com/a.png"),))

    assert payload == [
        {
            "role": "user",
            "content": [{"type": "image_url", "image_url": {"url": "https://example.com/a.png"}}],
        }
    ]


# ------------------------------------------------------------------ #
# Invocation
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_invoke_returns_full_text():
    client = LiteLLMClient(_descriptor(), api_base="http://localhost:4000", api_key="sk-test")

    with patch("litellm.acompletion", new=AsyncMock(return_value=_completion("Hello"))) as mock:
        reply = await client.invoke(MESSAGES)

    assert reply == "Hello"
    kwargs = mock.call_args.kwargs
    assert kwargs["model"] == MODEL
    assert kwargs["stream"] is False
    assert kwargs["api_base"] == "http://localhost:4000"
    assert kwargs["api_key"] == "sk-test"


@pytest.mark.asyncio
async def test_invoke_omits_unset_connection_options():
    client = LiteLLMClient(_descriptor())

    with patch("litellm.acompletion", new=AsyncMock(return_value=_completion("Hello"))) as mock:
        await client.invoke(MESSAGES)

    assert "api_base" not in mock.call_args.kwargs
    assert "api_key" not in mock.call_args.kwargs


@pytest.mark.asyncio
async def test_missing_content_yields_empty_text():
    """A null message content becomes '' so the relay flags it."""
    client = LiteLLMClient(_descriptor())

    with patch("litellm.acompletion", new=AsyncMock(return_value=_completion(None))):
        reply = await client.invoke(MESSAGES)

    assert reply == ""
    with pytest.raises(StreamIntegrityError):
        await StreamRelay(MODEL).consume(reply)


@pytest.mark.asyncio
async def test_streaming_invoke_yields_deltas():
    client = LiteLLMClient(_descriptor(streaming=True))

    with patch("litellm.acompletion", new=AsyncMock(return_value=_stream("Hel", None, "lo"))):
        reply = await client.invoke(MESSAGES)
        chunks = [chunk async for chunk in reply]

    assert chunks == ["Hel", "lo"]


@pytest.mark.asyncio
async def test_mid_stream_error_is_translated():
    client = LiteLLMClient(_descriptor(streaming=True))
    failing = _stream("par", error=ConnectionResetError("peer reset"))

    with patch("litellm.acompletion", new=AsyncMock(return_value=failing)):
        reply = await client.invoke(MESSAGES)
        with pytest.raises(ProviderTransportError):
            async for _ in reply:
                pass


# ------------------------------------------------------------------ #
# Exception mapping
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("raised", "expected"),
    [
        (
            litellm.exceptions.RateLimitError(
                message="quota", llm_provider="gemini", model=MODEL
            ),
            ProviderRateLimitError,
        ),
        (
            litellm.exceptions.Timeout(message="slow", model=MODEL, llm_provider="gemini"),
            ProviderTimeoutError,
        ),
        (
            litellm.exceptions.AuthenticationError(
                message="bad key", llm_provider="gemini", model=MODEL
            ),
            ModelUnavailableError,
        ),
        (ValueError("malformed"), ProviderTransportError),
    ],
)
async def test_exceptions_are_translated(raised, expected):
    client = LiteLLMClient(_descriptor())

    with patch("litellm.acompletion", new=AsyncMock(side_effect=raised)):
        with pytest.raises(expected) as exc_info:
            await client.invoke(MESSAGES)

    assert exc_info.value.model_id == MODEL
    assert exc_info.value.__cause__ is raised


# ------------------------------------------------------------------ #
# Construction
# ------------------------------------------------------------------ #


def test_check_credentials_skipped_with_explicit_key():
    client = LiteLLMClient(_descriptor(), api_key="sk-real")

    with patch("litellm.validate_environment") as mock:
        client.check_credentials()

    mock.assert_not_called()


def test_check_credentials_reports_missing_keys():
    client = LiteLLMClient(_descriptor())
    env = {"keys_in_environment": False, "missing_keys": ["GEMINI_API_KEY"]}

    with patch("litellm.validate_environment", return_value=env):
        with pytest.raises(ModelUnavailableError, match="GEMINI_API_KEY"):
            client.check_credentials()


@pytest.mark.asyncio
async def test_builder_uses_settings(fake_settings):
    build = litellm_client_builder(fake_settings)

    client = await build(_descriptor())

    assert isinstance(client, LiteLLMClient)
    assert client.model_id == MODEL
