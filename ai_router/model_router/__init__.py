"""Complexity-aware model routing with ordered fallback.

This package scores each request, picks an ordered chain of backend models
for the request's tier, and walks that chain until one model produces
content. It integrates with LiteLLM through the provider seam and keeps
rolling per-model statistics that drive degradation and adaptive ordering:
- Complexity scoring (SIMPLE/MODERATE/COMPLEX tiers)
- Lazy, singleflight client construction with failure cool-down
- Per-model concurrency limits with fast-fail queues
- Stream integrity checks (empty or truncated output falls back)

All state is in memory and per process.
"""

from __future__ import annotations

from ai_router.model_router.complexity import ComplexityAnalyzer
from ai_router.model_router.concurrency import ConcurrencyGate
from ai_router.model_router.errors import (
    AllModelsExhaustedError,
    ConfigurationError,
    ModelOverloadedError,
    ModelUnavailableError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    ProviderTransportError,
    RequestValidationError,
    RoutingContractError,
    RoutingError,
    StreamIntegrityError,
)
from ai_router.model_router.factory import ModelFactory
from ai_router.model_router.monitor import PerformanceEvent, PerformanceMonitor
from ai_router.model_router.registry import ModelRegistry
from ai_router.model_router.router import Router
from ai_router.model_router.selection import (
    AdaptiveStrategy,
    RuleBasedStrategy,
    SelectionStrategy,
    build_strategy,
)
from ai_router.model_router.stream import EventType, QueueSink, StreamEvent, StreamRelay, StreamSink
from ai_router.model_router.types import (
    AttemptRecord,
    Candidate,
    ComplexityScore,
    ImageAttachment,
    MessageTurn,
    ModelDescriptor,
    ModelStats,
    Outcome,
    RouteRequest,
    RouteResult,
    RoutingDecision,
    SelectionCriteria,
    Tier,
)

__all__ = [
    "AdaptiveStrategy",
    "AllModelsExhaustedError",
    "AttemptRecord",
    "Candidate",
    "ComplexityAnalyzer",
    "ComplexityScore",
    "ConcurrencyGate",
    "ConfigurationError",
    "EventType",
    "ImageAttachment",
    "MessageTurn",
    "ModelDescriptor",
    "ModelFactory",
    "ModelOverloadedError",
    "ModelRegistry",
    "ModelStats",
    "ModelUnavailableError",
    "Outcome",
    "PerformanceEvent",
    "PerformanceMonitor",
    "ProviderError",
    "ProviderRateLimitError",
    "ProviderTimeoutError",
    "ProviderTransportError",
    "QueueSink",
    "RequestValidationError",
    "RouteRequest",
    "RouteResult",
    "Router",
    "RoutingContractError",
    "RoutingDecision",
    "RoutingError",
    "RuleBasedStrategy",
    "SelectionCriteria",
    "SelectionStrategy",
    "StreamEvent",
    "StreamIntegrityError",
    "StreamRelay",
    "StreamSink",
    "Tier",
    "build_strategy",
]
