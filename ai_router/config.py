"""
Application configuration via pydantic-settings.

All settings are loaded from environment variables (or a .env file in dev).
The model table and the tier chains are JSON-valued variables, e.g.::

    MODELS='[{"model_id": "gemini/gemini-2.0-flash", "tier": "simple"}]'
    TIER_CHAINS='{"simple": ["gemini/gemini-2.0-flash"]}'

Nothing here is hot-reloaded: the router reads the table once at startup.
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache

from pydantic import BaseModel, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEV = "dev"
    PROD = "prod"
    TEST = "test"


class StrategyKind(StrEnum):
    """Selection strategy variants, chosen once at configuration time."""

    RULE_BASED = "rule_based"
    ADAPTIVE = "adaptive"


class ModelSpec(BaseModel):
    """One backend model as declared in configuration."""

    model_id: str = Field(min_length=1)
    tier: str = Field(pattern=r"^(simple|moderate|complex)$")
    supports_images: bool = False
    max_context_tokens: int = Field(default=32_768, ge=1)
    streaming: bool = True
    timeout_seconds: float = Field(default=30.0, gt=0)
    cost_weight: float = Field(default=1.0, gt=0)
    max_concurrency: int | None = Field(default=None, ge=1)
    max_queue: int = Field(default=16, ge=0)


def _default_models() -> list[ModelSpec]:
    return [
        ModelSpec(
            model_id="gemini/gemini-2.0-flash",
            tier="simple",
            supports_images=True,
            max_context_tokens=1_048_576,
            timeout_seconds=20.0,
            cost_weight=1.0,
        ),
        ModelSpec(
            model_id="gemini/gemini-2.5-pro",
            tier="moderate",
            supports_images=True,
            max_context_tokens=1_048_576,
            timeout_seconds=45.0,
            cost_weight=4.0,
        ),
        ModelSpec(
            model_id="gemini/gemini-3-pro-preview",
            tier="complex",
            supports_images=True,
            max_context_tokens=1_048_576,
            timeout_seconds=60.0,
            cost_weight=10.0,
        ),
    ]


def _default_tier_chains() -> dict[str, list[str]]:
    return {
        "simple": ["gemini/gemini-2.0-flash", "gemini/gemini-2.5-pro"],
        "moderate": ["gemini/gemini-2.5-pro", "gemini/gemini-2.0-flash"],
        "complex": [
            "gemini/gemini-3-pro-preview",
            "gemini/gemini-2.5-pro",
            "gemini/gemini-2.0-flash",
        ],
    }


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Application
    # ------------------------------------------------------------------ #
    environment: Environment = Environment.DEV
    debug: bool = False
    log_level: str = Field(default="INFO", pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    json_logs: bool = Field(
        default=False,
        description="Render logs as JSON (production) instead of the dev console format",
    )

    # ------------------------------------------------------------------ #
    # LiteLLM
    # ------------------------------------------------------------------ #
    litellm_base_url: str | None = Field(
        default=None,
        description="Optional LiteLLM proxy base URL. Unset = call providers directly.",
    )
    litellm_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="API key passed to LiteLLM. Empty = rely on provider env vars.",
    )

    # ------------------------------------------------------------------ #
    # Model table
    # ------------------------------------------------------------------ #
    models: list[ModelSpec] = Field(default_factory=_default_models)
    tier_chains: dict[str, list[str]] = Field(
        default_factory=_default_tier_chains,
        description="Ordered candidate chain per tier (primary first)",
    )
    selection_strategy: StrategyKind = StrategyKind.ADAPTIVE

    # ------------------------------------------------------------------ #
    # Request budgets
    # ------------------------------------------------------------------ #
    overall_budget_seconds: float = Field(
        default=90.0,
        gt=0,
        description="Upper bound on the sum of all attempts for one request",
    )
    budget_margin_seconds: float = Field(
        default=0.05,
        ge=0,
        description="Per-attempt timeouts stay this far below the remaining budget",
    )

    # ------------------------------------------------------------------ #
    # Performance monitoring
    # ------------------------------------------------------------------ #
    performance_window_size: int = Field(default=100, ge=1, le=10_000)
    degradation_success_floor: float = Field(default=0.5, ge=0.0, le=1.0)
    degradation_min_samples: int = Field(default=5, ge=1)
    degradation_cooldown_seconds: float = Field(default=60.0, gt=0)
    adaptive_min_samples: int = Field(
        default=5,
        ge=0,
        description="Below this many samples a model ranks with a neutral success prior",
    )
    recent_failures_kept: int = Field(default=50, ge=0)

    # ------------------------------------------------------------------ #
    # Client factory
    # ------------------------------------------------------------------ #
    client_construction_timeout_seconds: float = Field(default=10.0, gt=0)
    client_failure_cooldown_seconds: float = Field(default=30.0, gt=0)

    # ------------------------------------------------------------------ #
    # Complexity scoring
    # ------------------------------------------------------------------ #
    language_multipliers: dict[str, float] = Field(
        default_factory=lambda: {"en": 1.0, "zh": 1.2, "ms": 1.1},
        description="Score multiplier per language tag; unknown tags use 1.0",
    )

    # ------------------------------------------------------------------ #
    # Derived / Computed
    # ------------------------------------------------------------------ #
    @model_validator(mode="after")
    def _set_debug_from_env(self) -> Settings:
        if self.environment == Environment.DEV:
            self.debug = True
        return self

    @model_validator(mode="after")
    def _validate_budgets(self) -> Settings:
        if self.budget_margin_seconds >= self.overall_budget_seconds:
            raise ValueError("budget_margin_seconds must be below overall_budget_seconds")
        for tag, multiplier in self.language_multipliers.items():
            if multiplier <= 0:
                raise ValueError(f"language multiplier for {tag!r} must be positive")
        return self

    @model_validator(mode="after")
    def _validate_production_secrets(self) -> Settings:
        """Refuse to start in production with a development API key."""
        if self.environment != Environment.PROD:
            return self

        _insecure_tokens = {"changeme", "default", "test", "sk-dev-key", "sk-mock"}
        key = self.litellm_api_key.get_secret_value().lower()
        if key and any(token in key for token in _insecure_tokens):
            raise RuntimeError(
                "PRODUCTION STARTUP BLOCKED -- LITELLM_API_KEY contains an insecure "
                "default value. Set a real API key for production."
            )
        return self

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PROD


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings.

    Call once at process start and hand the result to ``Router.from_settings``.
    """
    return Settings()
