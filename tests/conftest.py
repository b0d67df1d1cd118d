"""
Shared test fixtures for pytest.

Provides common building blocks for all test modules:
- fake_settings: Test environment configuration with a small model table
- registry: ModelRegistry with one model per tier
- clock: Manually advanced monotonic clock
- make_router: Builds a Router over scripted clients
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence

import pytest

from ai_router.config import Environment, ModelSpec, Settings, StrategyKind, get_settings
from ai_router.model_router import (
    ModelDescriptor,
    ModelRegistry,
    Router,
    Tier,
)
from ai_router.telemetry import clear_context
from ai_router.testing import ScriptedBuilder, Step

SIMPLE_MODEL = "test/simple-model"
MODERATE_MODEL = "test/moderate-model"
COMPLEX_MODEL = "test/complex-model"

TIER_CHAINS = {
    "simple": [SIMPLE_MODEL, MODERATE_MODEL],
    "moderate": [MODERATE_MODEL, SIMPLE_MODEL],
    "complex": [COMPLEX_MODEL, MODERATE_MODEL, SIMPLE_MODEL],
}


# ------------------------------------------------------------------ #
# Session-scoped: clear settings cache between test sessions
# ------------------------------------------------------------------ #

@pytest.fixture(autouse=True, scope="session")
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so test overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Keep structlog context vars from leaking between tests."""
    clear_context()
    yield
    clear_context()


# ------------------------------------------------------------------ #
# Clock
# ------------------------------------------------------------------ #

class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ------------------------------------------------------------------ #
# Settings & registry
# ------------------------------------------------------------------ #

def model_specs(timeout_seconds: float = 1.0) -> list[ModelSpec]:
    """The three-model test table, one model per tier."""
    return [
        ModelSpec(model_id=SIMPLE_MODEL, tier="simple", timeout_seconds=timeout_seconds),
        ModelSpec(
            model_id=MODERATE_MODEL,
            tier="moderate",
            supports_images=True,
            timeout_seconds=timeout_seconds,
        ),
        ModelSpec(
            model_id=COMPLEX_MODEL,
            tier="complex",
            supports_images=True,
            timeout_seconds=timeout_seconds,
        ),
    ]


@pytest.fixture
def fake_settings() -> Settings:
    """Settings for the test environment with fast timeouts."""
    return Settings(
        environment=Environment.TEST,
        litellm_api_key="sk-test",
        models=model_specs(),
        tier_chains=TIER_CHAINS,
        selection_strategy=StrategyKind.RULE_BASED,
        overall_budget_seconds=5.0,
        client_construction_timeout_seconds=1.0,
    )


@pytest.fixture
def descriptors() -> list[ModelDescriptor]:
    return [
        ModelDescriptor(model_id=SIMPLE_MODEL, tier=Tier.SIMPLE, timeout_seconds=1.0),
        ModelDescriptor(
            model_id=MODERATE_MODEL,
            tier=Tier.MODERATE,
            supports_images=True,
            timeout_seconds=1.0,
        ),
        ModelDescriptor(
            model_id=COMPLEX_MODEL,
            tier=Tier.COMPLEX,
            supports_images=True,
            timeout_seconds=1.0,
        ),
    ]


@pytest.fixture
def registry(descriptors: list[ModelDescriptor]) -> ModelRegistry:
    return ModelRegistry(descriptors, TIER_CHAINS)


# ------------------------------------------------------------------ #
# Router
# ------------------------------------------------------------------ #

RouterFactory = Callable[..., tuple[Router, ScriptedBuilder]]


@pytest.fixture
def make_router(fake_settings: Settings) -> RouterFactory:
    """Return a helper building a Router over scripted clients.

    Usage:
        router, builder = make_router({COMPLEX_MODEL: [Step.hang()]})
    """

    def _make(
        scripts: Mapping[str, Sequence[Step]] | None = None,
        *,
        clock: Callable[[], float] | None = None,
        **overrides,
    ) -> tuple[Router, ScriptedBuilder]:
        settings = fake_settings.model_copy(update=overrides) if overrides else fake_settings
        builder = ScriptedBuilder(scripts=dict(scripts or {}))
        if clock is None:
            router = Router.from_settings(settings, client_builder=builder)
        else:
            router = Router.from_settings(settings, client_builder=builder, clock=clock)
        return router, builder

    return _make
