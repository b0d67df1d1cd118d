"""Value types shared by the routing components.

Everything here is immutable. Requests, decisions and results live for one
``route()`` call; descriptors live for the process lifetime.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any

# Rough prompt-size estimate; providers tokenize differently.
CHARS_PER_TOKEN = 4


class Tier(StrEnum):
    """Capability/cost class of a backend model, ordered cheapest first."""

    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]


_TIER_RANK = {Tier.SIMPLE: 0, Tier.MODERATE: 1, Tier.COMPLEX: 2}


class Outcome(StrEnum):
    """Result of one candidate attempt, as recorded in the trace."""

    SUCCESS = "success"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    TRANSPORT_ERROR = "transport_error"
    STREAM_INTEGRITY = "stream_integrity"
    UNAVAILABLE = "unavailable"
    BUDGET_EXHAUSTED = "budget_exhausted"


@dataclass(frozen=True)
class MessageTurn:
    role: str
    text: str


@dataclass(frozen=True)
class ImageAttachment:
    """An image sent alongside the prompt, by URL or inline base64 data."""

    url: str | None = None
    data: str | None = None
    mime_type: str = "image/jpeg"

    def __post_init__(self) -> None:
        if not self.url and not self.data:
            raise ValueError("ImageAttachment needs either url or data")

    def as_url(self) -> str:
        if self.url:
            return self.url
        return f"data:{self.mime_type};base64,{self.data}"


@dataclass(frozen=True)
class RouteRequest:
    """Normalized inbound generation request.

    Attributes:
        messages: Ordered conversation turns
        images: Attached images
        requires_analysis: Caller asks for deep analysis (heavier tier)
        language: Target language tag, e.g. "en", "zh", "ms"
        metadata: Free-form caller metadata, never inspected by routing
        preferred_models: Model ids to move to the front of the chain
        excluded_models: Model ids never to attempt
        requires_streaming: Only streaming-capable models are acceptable
    """

    messages: tuple[MessageTurn, ...] = ()
    images: tuple[ImageAttachment, ...] = ()
    requires_analysis: bool = False
    language: str = "en"
    metadata: Mapping[str, Any] = field(default_factory=dict)
    preferred_models: tuple[str, ...] = ()
    excluded_models: tuple[str, ...] = ()
    requires_streaming: bool = False

    def __post_init__(self) -> None:
        # Accept lists from callers but store tuples so the request stays immutable.
        object.__setattr__(self, "messages", tuple(self.messages))
        object.__setattr__(self, "images", tuple(self.images))
        object.__setattr__(self, "preferred_models", tuple(self.preferred_models))
        object.__setattr__(self, "excluded_models", tuple(self.excluded_models))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def text_length(self) -> int:
        return sum(len(turn.text) for turn in self.messages)

    @property
    def has_text(self) -> bool:
        return any(turn.text.strip() for turn in self.messages)

    @property
    def estimated_tokens(self) -> int:
        return self.text_length // CHARS_PER_TOKEN


@dataclass(frozen=True)
class ComplexityScore:
    """Derived complexity of a request.

    Attributes:
        tier: Tier the score maps to
        score: Weighted score, 0-100
        factors: Names of the factors that contributed, for observability
    """

    tier: Tier
    score: float
    factors: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not 0.0 <= self.score <= 100.0:
            raise ValueError(f"Complexity score must be 0-100, got {self.score}")


@dataclass(frozen=True)
class ModelDescriptor:
    """Static description of one backend model.

    Attributes:
        model_id: Unique LiteLLM model identifier
        tier: Tier this model is classed in
        supports_images: Accepts image attachments
        max_context_tokens: Context window size
        streaming: Can stream its output
        timeout_seconds: Per-attempt timeout
        cost_weight: Relative cost (1.0 = baseline)
        max_concurrency: Optional in-flight limit for this model
        max_queue: Waiters allowed beyond max_concurrency before fast-fail
    """

    model_id: str
    tier: Tier
    supports_images: bool = False
    max_context_tokens: int = 32_768
    streaming: bool = True
    timeout_seconds: float = 30.0
    cost_weight: float = 1.0
    max_concurrency: int | None = None
    max_queue: int = 16

    def __post_init__(self) -> None:
        if not self.model_id:
            raise ValueError("model_id must be non-empty")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.cost_weight <= 0:
            raise ValueError("cost_weight must be positive")
        if self.max_concurrency is not None and self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if self.max_queue < 0:
            raise ValueError("max_queue cannot be negative")


@dataclass(frozen=True)
class ModelStats:
    """Read-only snapshot of a model's rolling performance."""

    model_id: str
    samples: int = 0
    successes: int = 0
    failures: int = 0
    success_rate: float | None = None
    avg_latency_ms: float | None = None
    p95_latency_ms: float | None = None
    consecutive_failures: int = 0
    last_error: str | None = None
    degraded: bool = False
    degraded_until: float | None = None


@dataclass(frozen=True)
class SelectionCriteria:
    """Hard requirements and preferences derived from a request."""

    requires_images: bool = False
    requires_streaming: bool = False
    preferred_models: tuple[str, ...] = ()
    excluded_models: tuple[str, ...] = ()
    estimated_tokens: int = 0

    @classmethod
    def from_request(cls, request: RouteRequest) -> SelectionCriteria:
        return cls(
            requires_images=bool(request.images),
            requires_streaming=request.requires_streaming,
            preferred_models=request.preferred_models,
            excluded_models=request.excluded_models,
            estimated_tokens=request.estimated_tokens,
        )


@dataclass(frozen=True)
class Candidate:
    model_id: str
    reason: str


@dataclass(frozen=True)
class RoutingDecision:
    """Ordered candidate chain: primary first, then fallbacks."""

    chain: tuple[Candidate, ...]
    tier: Tier
    strategy: str

    @property
    def primary(self) -> Candidate:
        return self.chain[0]

    @property
    def model_ids(self) -> tuple[str, ...]:
        return tuple(candidate.model_id for candidate in self.chain)


@dataclass(frozen=True)
class AttemptRecord:
    model_id: str
    outcome: Outcome
    latency_ms: float
    error_type: str | None = None


@dataclass(frozen=True)
class RouteResult:
    """Outcome of one routed request."""

    success: bool
    model_used: str | None
    trace: tuple[AttemptRecord, ...]
    content: str = ""
    score: ComplexityScore | None = None
    decision: RoutingDecision | None = None
    request_id: str = ""
    error: Exception | None = None

    @property
    def fallback_count(self) -> int:
        return max(len(self.trace) - 1, 0)
