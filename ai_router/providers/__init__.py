"""Backend provider seam and the LiteLLM implementation."""

from __future__ import annotations

from ai_router.providers.base import ClientBuilder, ModelClient, ProviderReply
from ai_router.providers.litellm_client import LiteLLMClient, litellm_client_builder

__all__ = [
    "ClientBuilder",
    "LiteLLMClient",
    "ModelClient",
    "ProviderReply",
    "litellm_client_builder",
]
