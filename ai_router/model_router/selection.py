"""Model selection strategies.

A strategy turns a ComplexityScore plus the monitor's current snapshots into
an ordered RoutingDecision. The router never reorders the chain; whatever
order the strategy returns is the order candidates are attempted in.

Two strategies exist, chosen once at configuration time:

RuleBasedStrategy:
    The tier's configured chain, in configured order. Degraded models are
    moved behind healthy ones so they are never primary while a healthy
    candidate remains.

AdaptiveStrategy:
    The same tier-eligible set. Tiers stay in chain order; within each tier
    models are stably re-sorted by recent success rate (descending), then p95
    latency (ascending), then cost weight. Degraded models are dropped; if
    that would leave nothing, the degraded model whose cool-down ends soonest
    is kept as the last resort.

Both apply the request's SelectionCriteria first (excluded models, then image,
streaming and context-window requirements), relaxing any filter that would
empty the chain, and finally move preferred models to the front.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Protocol

import structlog

from ai_router.config import StrategyKind
from ai_router.model_router.errors import RoutingContractError
from ai_router.model_router.types import (
    Candidate,
    ComplexityScore,
    ModelStats,
    RoutingDecision,
    SelectionCriteria,
    Tier,
)

if TYPE_CHECKING:
    from ai_router.config import Settings
    from ai_router.model_router.registry import ModelRegistry

log = structlog.get_logger(__name__)

NEUTRAL_SUCCESS_PRIOR = 1.0


class SelectionStrategy(Protocol):
    """Anything that can order candidates for a scored request."""

    name: str

    def select(
        self,
        score: ComplexityScore,
        stats: Mapping[str, ModelStats],
        criteria: SelectionCriteria | None = None,
    ) -> RoutingDecision: ...


def _is_degraded(stats: Mapping[str, ModelStats], model_id: str) -> bool:
    snapshot = stats.get(model_id)
    return snapshot is not None and snapshot.degraded


def validate_decision(decision: RoutingDecision) -> RoutingDecision:
    """Reject empty or duplicated chains.

    Raises:
        RoutingContractError: The chain is empty or repeats a model id
    """
    ids = decision.model_ids
    if not ids:
        raise RoutingContractError(
            f"{decision.strategy} produced an empty chain for tier {decision.tier}"
        )
    if len(set(ids)) != len(ids):
        raise RoutingContractError(
            f"{decision.strategy} produced duplicate candidates: {list(ids)}"
        )
    return decision


class _CriteriaStrategy:
    """Shared filtering, preference handling and contract checks."""

    name = "base"

    def __init__(self, registry: ModelRegistry) -> None:
        self._registry = registry

    def select(
        self,
        score: ComplexityScore,
        stats: Mapping[str, ModelStats],
        criteria: SelectionCriteria | None = None,
    ) -> RoutingDecision:
        """Build the ordered candidate chain for ``score``.

        Args:
            score: Complexity of the request
            stats: Current monitor snapshots keyed by model id
            criteria: Hard requirements and preferences from the request

        Returns:
            RoutingDecision with a non-empty, duplicate-free chain

        Raises:
            RoutingContractError: Ordering produced an invalid chain
        """
        criteria = criteria or SelectionCriteria()
        model_ids, relaxed = self._filter(list(self._registry.chain_for(score.tier)), criteria)
        model_ids = self._with_preferred(model_ids, criteria)

        candidates = self._order(model_ids, stats)
        candidates = self._promote_preferred(candidates, criteria.preferred_models, stats)
        if relaxed:
            tag = "relaxed:" + ",".join(relaxed)
            candidates = [Candidate(c.model_id, f"{c.reason};{tag}") for c in candidates]

        decision = validate_decision(
            RoutingDecision(chain=tuple(candidates), tier=score.tier, strategy=self.name)
        )
        log.debug(
            "selection.decided",
            strategy=self.name,
            tier=score.tier.value,
            chain=list(decision.model_ids),
            relaxed=relaxed or None,
        )
        return decision

    def _filter(
        self,
        model_ids: list[str],
        criteria: SelectionCriteria,
    ) -> tuple[list[str], list[str]]:
        relaxed: list[str] = []

        def narrow(current: list[str], keep, label: str) -> list[str]:
            narrowed = [model_id for model_id in current if keep(model_id)]
            if narrowed:
                return narrowed
            relaxed.append(label)
            log.warning("selection.filter_relaxed", filter=label, candidates=current)
            return current

        excluded = set(criteria.excluded_models)
        if excluded:
            model_ids = narrow(model_ids, lambda m: m not in excluded, "excluded_models")
        if criteria.requires_images:
            model_ids = narrow(
                model_ids, lambda m: self._registry.get(m).supports_images, "requires_images"
            )
        if criteria.requires_streaming:
            model_ids = narrow(
                model_ids, lambda m: self._registry.get(m).streaming, "requires_streaming"
            )
        if criteria.estimated_tokens:
            model_ids = narrow(
                model_ids,
                lambda m: self._registry.get(m).max_context_tokens >= criteria.estimated_tokens,
                "context_window",
            )
        return model_ids, relaxed

    def _with_preferred(self, model_ids: list[str], criteria: SelectionCriteria) -> list[str]:
        """Add registered preferred models that sit outside the tier chain."""
        extra: list[str] = []
        for model_id in criteria.preferred_models:
            if model_id in model_ids or model_id in extra or model_id not in self._registry:
                continue
            if model_id in criteria.excluded_models:
                continue
            descriptor = self._registry.get(model_id)
            if criteria.requires_images and not descriptor.supports_images:
                continue
            if criteria.requires_streaming and not descriptor.streaming:
                continue
            if descriptor.max_context_tokens < criteria.estimated_tokens:
                continue
            extra.append(model_id)
        return model_ids + extra

    @staticmethod
    def _promote_preferred(
        candidates: list[Candidate],
        preferred: tuple[str, ...],
        stats: Mapping[str, ModelStats],
    ) -> list[Candidate]:
        if not preferred:
            return candidates
        by_id = {c.model_id: c for c in candidates}
        front: list[Candidate] = []
        moved: set[str] = set()
        for model_id in preferred:
            candidate = by_id.get(model_id)
            if candidate is None or model_id in moved or _is_degraded(stats, model_id):
                continue
            front.append(Candidate(model_id, f"preferred;{candidate.reason}"))
            moved.add(model_id)
        if not front:
            return candidates
        return front + [c for c in candidates if c.model_id not in moved]

    def _order(
        self,
        model_ids: list[str],
        stats: Mapping[str, ModelStats],
    ) -> list[Candidate]:
        raise NotImplementedError


class RuleBasedStrategy(_CriteriaStrategy):
    """Configured order, with degraded models demoted to the tail."""

    name = StrategyKind.RULE_BASED.value

    def _order(
        self,
        model_ids: list[str],
        stats: Mapping[str, ModelStats],
    ) -> list[Candidate]:
        healthy = [m for m in model_ids if not _is_degraded(stats, m)]
        degraded = [m for m in model_ids if _is_degraded(stats, m)]

        candidates = [
            Candidate(model_id, "configured_primary" if index == 0 else "configured_fallback")
            for index, model_id in enumerate(healthy)
        ]
        candidates.extend(Candidate(model_id, "degraded_last_resort") for model_id in degraded)
        return candidates


class AdaptiveStrategy(_CriteriaStrategy):
    """Reorders models within each tier by success rate, p95 latency, then cost."""

    name = StrategyKind.ADAPTIVE.value

    def __init__(self, registry: ModelRegistry, *, min_samples: int = 5) -> None:
        super().__init__(registry)
        self._min_samples = min_samples

    def _sort_key(
        self,
        stats: Mapping[str, ModelStats],
        model_id: str,
    ) -> tuple[float, float, float]:
        cost = self._registry.get(model_id).cost_weight
        snapshot = stats.get(model_id)
        if snapshot is None or snapshot.samples < self._min_samples:
            return (-NEUTRAL_SUCCESS_PRIOR, 0.0, cost)
        rate = snapshot.success_rate if snapshot.success_rate is not None else NEUTRAL_SUCCESS_PRIOR
        latency = snapshot.p95_latency_ms if snapshot.p95_latency_ms is not None else 0.0
        return (-rate, latency, cost)

    def _by_tier(self, model_ids: list[str]) -> list[list[str]]:
        """Split the chain into per-tier groups, in order of first appearance."""
        groups: dict[Tier, list[str]] = {}
        for model_id in model_ids:
            groups.setdefault(self._registry.get(model_id).tier, []).append(model_id)
        return list(groups.values())

    def _describe(self, stats: Mapping[str, ModelStats], model_id: str) -> str:
        snapshot = stats.get(model_id)
        if snapshot is None or snapshot.samples < self._min_samples:
            return "adaptive:insufficient_samples"
        return (
            f"adaptive:success_rate={snapshot.success_rate:.2f},"
            f"p95_ms={snapshot.p95_latency_ms:.0f}"
        )

    def _order(
        self,
        model_ids: list[str],
        stats: Mapping[str, ModelStats],
    ) -> list[Candidate]:
        healthy = [m for m in model_ids if not _is_degraded(stats, m)]
        if healthy:
            # Tiers keep their chain order; only models within a tier are re-ranked.
            # sorted() is stable, so full ties keep configured order.
            ranked = [
                model_id
                for group in self._by_tier(healthy)
                for model_id in sorted(group, key=lambda m: self._sort_key(stats, m))
            ]
            return [Candidate(m, self._describe(stats, m)) for m in ranked]

        last_resort = min(
            model_ids,
            key=lambda m: stats[m].degraded_until or 0.0,
        )
        log.warning(
            "selection.all_degraded",
            candidates=model_ids,
            last_resort=last_resort,
        )
        return [Candidate(last_resort, "degraded_last_resort")]


def build_strategy(
    kind: StrategyKind | str,
    registry: ModelRegistry,
    settings: Settings | None = None,
) -> SelectionStrategy:
    """Instantiate the configured strategy.

    Raises:
        ValueError: Unknown strategy kind
    """
    kind = StrategyKind(kind)
    if kind is StrategyKind.RULE_BASED:
        return RuleBasedStrategy(registry)
    min_samples = settings.adaptive_min_samples if settings is not None else 5
    return AdaptiveStrategy(registry, min_samples=min_samples)
