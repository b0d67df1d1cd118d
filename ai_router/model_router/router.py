"""Request router: score, select, then walk the fallback chain.

Routing flow for one request:
1. Validate: at least some non-blank text or an image
2. Score complexity (ComplexityAnalyzer)
3. Ask the configured SelectionStrategy for an ordered candidate chain
4. Attempt candidates strictly in order, each at most once:
   - Get (or lazily build) the client from the ModelFactory
   - Hold a slot in the model's ConcurrencyGate
   - Invoke under a per-attempt timeout capped by the remaining budget
   - Relay output to the sink and enforce stream integrity
5. First success wins. Every attempt that ran, including one cut short by the
   overall budget, is reported to the PerformanceMonitor before the next
   candidate starts.
6. Nothing succeeded, or the overall budget ran out: AllModelsExhaustedError
   with the full attempt trace and a generic user-facing message.

Cancellation (caller disconnect) is not a model failure: it is not recorded
and it propagates immediately.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections import deque
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING

import structlog

from ai_router.model_router.complexity import ComplexityAnalyzer
from ai_router.model_router.concurrency import ConcurrencyGate
from ai_router.model_router.errors import (
    GENERIC_UNAVAILABLE_MESSAGE,
    AllModelsExhaustedError,
    ProviderError,
    ProviderTimeoutError,
    ProviderTransportError,
    RequestValidationError,
    RoutingError,
)
from ai_router.model_router.factory import ModelFactory
from ai_router.model_router.monitor import PerformanceMonitor
from ai_router.model_router.registry import ModelRegistry
from ai_router.model_router.selection import SelectionStrategy, build_strategy
from ai_router.model_router.stream import EventType, QueueSink, StreamEvent, StreamRelay
from ai_router.model_router.types import (
    AttemptRecord,
    ModelStats,
    Outcome,
    RouteRequest,
    RouteResult,
    SelectionCriteria,
)
from ai_router.telemetry import bind_route_context, new_request_id, unbind_route_context

if TYPE_CHECKING:
    from ai_router.config import Settings
    from ai_router.model_router.stream import StreamSink
    from ai_router.providers.base import ClientBuilder

log = structlog.get_logger(__name__)


def _elapsed_ms(started: float, now: float) -> float:
    return round((now - started) * 1000, 2)


class Router:
    """Routes generation requests across a tiered fallback chain."""

    def __init__(
        self,
        registry: ModelRegistry,
        factory: ModelFactory,
        monitor: PerformanceMonitor,
        strategy: SelectionStrategy,
        analyzer: ComplexityAnalyzer | None = None,
        gate: ConcurrencyGate | None = None,
        *,
        overall_budget: float = 90.0,
        budget_margin: float = 0.05,
        recent_failures_kept: int = 50,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the router.

        Args:
            registry: Model table and tier chains
            factory: Lazily builds and caches model clients
            monitor: Receives one record per attempt that ran
            strategy: Orders candidates for a scored request
            analyzer: Complexity scorer (default multipliers if omitted)
            gate: Per-model concurrency limits (built from registry if omitted)
            overall_budget: Seconds allowed for all attempts of one request
            budget_margin: Per-attempt timeouts stay this far below the
                remaining budget
            recent_failures_kept: Failed results retained for diagnostics
            clock: Monotonic time source (injectable for tests)
        """
        if budget_margin >= overall_budget:
            raise ValueError("budget_margin must be smaller than overall_budget")
        self._registry = registry
        self._factory = factory
        self._monitor = monitor
        self._strategy = strategy
        self._analyzer = analyzer or ComplexityAnalyzer()
        self._gate = gate or ConcurrencyGate(
            [registry.get(model_id) for model_id in registry.model_ids]
        )
        self._overall_budget = overall_budget
        self._budget_margin = budget_margin
        self._clock = clock
        self._recent_failures: deque[RouteResult] = deque(maxlen=recent_failures_kept)

        log.info(
            "router.initialized",
            strategy=strategy.name,
            overall_budget_seconds=overall_budget,
            models=len(registry),
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client_builder: ClientBuilder | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> Router:
        """Wire a router from configuration.

        Args:
            settings: Application settings
            client_builder: Builds a ModelClient per descriptor; defaults to
                LiteLLM clients configured from ``settings``
            clock: Monotonic time source shared by all components
        """
        if client_builder is None:
            # Imported here: the LiteLLM client imports this package's errors.
            from ai_router.providers.litellm_client import litellm_client_builder

            client_builder = litellm_client_builder(settings)

        registry = ModelRegistry.from_settings(settings)
        factory = ModelFactory(
            registry,
            client_builder,
            construction_timeout=settings.client_construction_timeout_seconds,
            failure_cooldown=settings.client_failure_cooldown_seconds,
            clock=clock,
        )
        monitor = PerformanceMonitor(
            window_size=settings.performance_window_size,
            success_floor=settings.degradation_success_floor,
            min_samples=settings.degradation_min_samples,
            cooldown_seconds=settings.degradation_cooldown_seconds,
            clock=clock,
        )
        return cls(
            registry,
            factory,
            monitor,
            build_strategy(settings.selection_strategy, registry, settings),
            ComplexityAnalyzer(settings.language_multipliers),
            overall_budget=settings.overall_budget_seconds,
            budget_margin=settings.budget_margin_seconds,
            recent_failures_kept=settings.recent_failures_kept,
            clock=clock,
        )

    @property
    def monitor(self) -> PerformanceMonitor:
        return self._monitor

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    @staticmethod
    def _validate(request: RouteRequest) -> None:
        if not request.has_text and not request.images:
            raise RequestValidationError("Request has no text content and no images")

    async def route(self, request: RouteRequest, sink: StreamSink | None = None) -> RouteResult:
        """Route one request and return the first successful result.

        Args:
            request: Normalized generation request
            sink: Optional receiver of incremental output

        Returns:
            Successful RouteResult with content and attempt trace

        Raises:
            RequestValidationError: Nothing to send; no candidate attempted
            AllModelsExhaustedError: Every candidate failed or the budget ran out
        """
        self._validate(request)
        request_id = str(request.metadata.get("request_id") or new_request_id())
        bind_route_context(request_id)
        try:
            return await self._route(request, sink, request_id)
        finally:
            unbind_route_context()

    async def _route(
        self,
        request: RouteRequest,
        sink: StreamSink | None,
        request_id: str,
    ) -> RouteResult:
        started = self._clock()
        deadline = started + self._overall_budget

        score = self._analyzer.analyze(request)
        decision = self._strategy.select(
            score,
            self._monitor.snapshot_all(),
            SelectionCriteria.from_request(request),
        )
        log.info(
            "router.decision",
            tier=score.tier.value,
            score=score.score,
            factors=list(score.factors),
            strategy=decision.strategy,
            chain=list(decision.model_ids),
        )

        trace: list[AttemptRecord] = []
        last_error: Exception | None = None
        budget_expired = False

        for position, candidate in enumerate(decision.chain, start=1):
            model_id = candidate.model_id
            descriptor = self._registry.get(model_id)

            remaining = deadline - self._clock()
            attempt_timeout = min(descriptor.timeout_seconds, remaining - self._budget_margin)
            if attempt_timeout <= 0:
                # Never started, so it is neither traced nor recorded.
                budget_expired = True
                log.warning("router.budget_exhausted", next_model_id=model_id, attempt=position)
                break
            capped_by_budget = attempt_timeout < descriptor.timeout_seconds

            relay = StreamRelay(model_id, sink)
            attempt_started = self._clock()
            timed_out = False
            try:
                content = await asyncio.wait_for(
                    self._attempt(model_id, request, relay),
                    timeout=attempt_timeout,
                )
            except asyncio.CancelledError:
                log.info("router.cancelled", model_id=model_id, attempt=position)
                raise
            except TimeoutError:
                timed_out = True
                error: ProviderError = ProviderTimeoutError(
                    f"{model_id} timed out after {attempt_timeout:.2f}s",
                    model_id=model_id,
                )
            except ProviderError as exc:
                error = exc
            except RoutingError:
                raise
            except Exception as exc:
                log.warning(
                    "router.unexpected_provider_error",
                    model_id=model_id,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                error = ProviderTransportError(
                    f"{model_id} raised {type(exc).__name__}: {exc}",
                    model_id=model_id,
                )
                error.__cause__ = exc
            else:
                latency_ms = _elapsed_ms(attempt_started, self._clock())
                self._monitor.record(model_id, True, latency_ms)
                trace.append(AttemptRecord(model_id, Outcome.SUCCESS, latency_ms))
                log.info(
                    "router.routed",
                    model_id=model_id,
                    attempt=position,
                    latency_ms=latency_ms,
                    total_ms=_elapsed_ms(started, self._clock()),
                )
                return RouteResult(
                    success=True,
                    model_used=model_id,
                    trace=tuple(trace),
                    content=content,
                    score=score,
                    decision=decision,
                    request_id=request_id,
                )

            latency_ms = _elapsed_ms(attempt_started, self._clock())
            last_error = error
            error_type = type(error).__name__
            self._monitor.record(model_id, False, latency_ms, error_type)
            if timed_out and capped_by_budget:
                budget_expired = True
                trace.append(
                    AttemptRecord(model_id, Outcome.BUDGET_EXHAUSTED, latency_ms, error_type)
                )
                log.warning(
                    "router.budget_exhausted",
                    model_id=model_id,
                    attempt=position,
                    latency_ms=latency_ms,
                )
            else:
                outcome = Outcome(error.outcome)
                trace.append(AttemptRecord(model_id, outcome, latency_ms, error_type))
                log.warning(
                    "router.attempt_failed",
                    model_id=model_id,
                    attempt=position,
                    outcome=outcome.value,
                    error_type=error_type,
                    latency_ms=latency_ms,
                )

            if relay.partial and sink is not None:
                await sink.reset(model_id=model_id)
            if budget_expired:
                break

        result = RouteResult(
            success=False,
            model_used=None,
            trace=tuple(trace),
            score=score,
            decision=decision,
            request_id=request_id,
            error=last_error,
        )
        self._recent_failures.append(result)
        log.error(
            "router.exhausted",
            attempts=len(trace),
            budget_expired=budget_expired,
            outcomes=[record.outcome.value for record in trace],
            total_ms=_elapsed_ms(started, self._clock()),
        )
        raise AllModelsExhaustedError(tuple(trace), result=result, budget_expired=budget_expired)

    async def _attempt(self, model_id: str, request: RouteRequest, relay: StreamRelay) -> str:
        client = await self._factory.get_or_create(model_id)
        async with self._gate.slot(model_id):
            reply = await client.invoke(request.messages, request.images)
            return await relay.consume(reply)

    async def stream(self, request: RouteRequest, *, maxsize: int = 256) -> AsyncIterator[StreamEvent]:
        """Route ``request`` and yield its output as StreamEvents.

        Yields TOKEN events as chunks arrive, RESET when a candidate failed
        after partial output, and finally DONE (full content) or ERROR
        (generic message). Closing the generator early cancels the route.

        Raises:
            RequestValidationError: Nothing to send
        """
        self._validate(request)
        sink = QueueSink(maxsize)

        async def run() -> None:
            try:
                result = await self.route(request, sink)
            except AllModelsExhaustedError as exc:
                request_id = exc.result.request_id if exc.result is not None else ""
                await sink.close(
                    StreamEvent(EventType.ERROR, str(exc), metadata={"request_id": request_id})
                )
            except RoutingError as exc:
                log.error("router.stream_failed", error_type=type(exc).__name__, error=str(exc))
                await sink.close(StreamEvent(EventType.ERROR, GENERIC_UNAVAILABLE_MESSAGE))
            else:
                await sink.close(
                    StreamEvent(
                        EventType.DONE,
                        result.content,
                        metadata={"model_id": result.model_used, "request_id": result.request_id},
                    )
                )

        task = asyncio.create_task(run())
        try:
            while True:
                if task.done() and sink.queue.empty():
                    # The route task ended without closing the stream: surface its error.
                    task.result()
                    return
                getter = asyncio.ensure_future(sink.queue.get())
                await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
                if not getter.done():
                    getter.cancel()
                    continue
                event = getter.result()
                yield event
                if event.type in (EventType.DONE, EventType.ERROR):
                    return
        finally:
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    def get_performance_analytics(self) -> dict[str, ModelStats]:
        """Read-only snapshot of every registered model's rolling stats."""
        return {model_id: self._monitor.snapshot(model_id) for model_id in self._registry.model_ids}

    def recent_failures(self) -> tuple[RouteResult, ...]:
        """Most recent failed results, oldest first."""
        return tuple(self._recent_failures)

    async def aclose(self) -> None:
        """Close every cached model client."""
        await self._factory.aclose()
