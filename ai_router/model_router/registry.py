"""Model registry - the immutable table of backend descriptors.

Built once at process start from Settings (or explicitly in tests) and
never mutated afterwards. Validation happens here so a bad table fails the
process at startup instead of surfacing as request-time errors.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING

import structlog

from ai_router.model_router.errors import ConfigurationError
from ai_router.model_router.types import ModelDescriptor, Tier

if TYPE_CHECKING:
    from ai_router.config import Settings

log = structlog.get_logger(__name__)


class ModelRegistry:
    """Read-only catalog of descriptors and the configured chain per tier."""

    def __init__(
        self,
        descriptors: Iterable[ModelDescriptor],
        tier_chains: Mapping[Tier | str, Iterable[str]],
    ) -> None:
        """Validate and freeze the model table.

        Args:
            descriptors: Every available backend model
            tier_chains: Ordered candidate model ids per tier (primary first)

        Raises:
            ConfigurationError: Duplicate ids, a missing or empty tier chain,
                unknown ids in a chain, or duplicates within a chain
        """
        models: dict[str, ModelDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.model_id in models:
                raise ConfigurationError(f"Duplicate model id: {descriptor.model_id}")
            models[descriptor.model_id] = descriptor

        chains: dict[Tier, tuple[str, ...]] = {}
        for raw_tier, ids in tier_chains.items():
            try:
                tier = Tier(raw_tier)
            except ValueError as exc:
                raise ConfigurationError(f"Unknown tier in chains: {raw_tier!r}") from exc
            chain = tuple(ids)
            unknown = [model_id for model_id in chain if model_id not in models]
            if unknown:
                raise ConfigurationError(
                    f"Tier {tier.value} references unknown models: {unknown}"
                )
            if len(set(chain)) != len(chain):
                raise ConfigurationError(f"Tier {tier.value} chain lists a model twice")
            chains[tier] = chain

        for tier in Tier:
            if not chains.get(tier):
                raise ConfigurationError(f"Tier {tier.value} has no candidate models")

        self._models = MappingProxyType(models)
        self._chains = MappingProxyType(chains)

        log.info(
            "model_registry.initialized",
            models=list(models),
            chains={tier.value: list(chain) for tier, chain in chains.items()},
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> ModelRegistry:
        """Build the registry from the configured model table."""
        descriptors = [
            ModelDescriptor(
                model_id=spec.model_id,
                tier=Tier(spec.tier),
                supports_images=spec.supports_images,
                max_context_tokens=spec.max_context_tokens,
                streaming=spec.streaming,
                timeout_seconds=spec.timeout_seconds,
                cost_weight=spec.cost_weight,
                max_concurrency=spec.max_concurrency,
                max_queue=spec.max_queue,
            )
            for spec in settings.models
        ]
        return cls(descriptors, settings.tier_chains)

    def get(self, model_id: str) -> ModelDescriptor:
        try:
            return self._models[model_id]
        except KeyError as exc:
            raise ConfigurationError(f"Unknown model id: {model_id}") from exc

    def chain_for(self, tier: Tier) -> tuple[str, ...]:
        return self._chains[tier]

    def models_in_tier(self, tier: Tier) -> tuple[ModelDescriptor, ...]:
        return tuple(model for model in self._models.values() if model.tier == tier)

    def tier_of(self, model_id: str) -> Tier | None:
        model = self._models.get(model_id)
        return model.tier if model else None

    @property
    def model_ids(self) -> tuple[str, ...]:
        return tuple(self._models)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models

    def __len__(self) -> int:
        return len(self._models)
