"""Error taxonomy for request routing.

Only two exceptions cross the ``Router.route`` boundary:
``RequestValidationError`` (nothing was attempted) and
``AllModelsExhaustedError`` (every candidate failed or the budget ran out).
Everything under ``ProviderError`` is retryable and handled by the fallback
loop.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ai_router.model_router.types import AttemptRecord, RouteResult

GENERIC_UNAVAILABLE_MESSAGE = (
    "The AI service is temporarily unavailable. Please try again shortly."
)


class RoutingError(Exception):
    """Base exception for all routing failures."""


class ConfigurationError(RoutingError):
    """Model table or tier chains are invalid. Raised at startup."""


class RoutingContractError(RoutingError):
    """A selection strategy produced an invalid chain (empty or duplicated)."""


class RequestValidationError(RoutingError):
    """The request carries no usable content. No candidate is attempted."""


class ProviderError(RoutingError):
    """Retryable failure of a single candidate attempt."""

    outcome = "transport_error"

    def __init__(self, message: str, *, model_id: str | None = None) -> None:
        super().__init__(message)
        self.model_id = model_id


class ProviderTimeoutError(ProviderError):
    """Per-attempt timeout elapsed."""

    outcome = "timeout"


class ProviderRateLimitError(ProviderError):
    """Provider signalled overload or quota exhaustion."""

    outcome = "rate_limited"


class ModelOverloadedError(ProviderRateLimitError):
    """Local per-model concurrency queue is full."""


class ProviderTransportError(ProviderError):
    """Network or upstream API failure."""

    outcome = "transport_error"


class StreamIntegrityError(ProviderError):
    """Provider reported success but delivered empty or truncated output."""

    outcome = "stream_integrity"

    def __init__(
        self,
        message: str,
        *,
        model_id: str | None = None,
        truncated: bool = False,
        chars_received: int = 0,
    ) -> None:
        super().__init__(message, model_id=model_id)
        self.truncated = truncated
        self.chars_received = chars_received


class ModelUnavailableError(ProviderError):
    """Client construction failed (e.g. missing credentials) or is cooling down."""

    outcome = "unavailable"

    def __init__(
        self,
        message: str,
        *,
        model_id: str | None = None,
        retry_after: float = 0.0,
    ) -> None:
        super().__init__(message, model_id=model_id)
        self.retry_after = retry_after


class AllModelsExhaustedError(RoutingError):
    """Terminal failure: no candidate produced content.

    ``str(exc)`` is deliberately generic; the per-attempt ``trace`` is for
    diagnostics and observability, not for end users.
    """

    def __init__(
        self,
        trace: tuple[AttemptRecord, ...],
        *,
        result: RouteResult | None = None,
        budget_expired: bool = False,
    ) -> None:
        super().__init__(GENERIC_UNAVAILABLE_MESSAGE)
        self.trace = trace
        self.result = result
        self.budget_expired = budget_expired
