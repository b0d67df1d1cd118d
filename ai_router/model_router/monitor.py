"""Rolling per-model performance tracking and degradation.

The PerformanceMonitor is the only long-lived mutable state in the routing
path. Each model id gets a PerformanceRecord, created on first use, that
holds a fixed-capacity window of recent attempt outcomes. All mutation is
append-and-evict under the record's own lock; readers get an immutable
ModelStats snapshot, so selection never sees a half-updated record.

Degradation policy:
- Evaluated when a failure is recorded
- Requires at least ``min_samples`` outcomes in the window
- Success rate below ``success_floor`` marks the model degraded until
  ``now + cooldown``
- Past ``degraded_until`` the model is eligible again with no manual reset

Optional fan-out: ``subscribe()`` hands out bounded asyncio queues that
receive a PerformanceEvent per record, delivered on the subscriber's own
event loop; a full queue drops the event instead of blocking the router.
"""

from __future__ import annotations

import asyncio
import math
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

from ai_router.model_router.types import ModelStats

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Sample:
    success: bool
    latency_ms: float


@dataclass(frozen=True)
class PerformanceEvent:
    """Published to subscribers after every recorded attempt."""

    model_id: str
    success: bool
    latency_ms: float
    degraded: bool
    timestamp: float
    error_type: str | None = None


@dataclass
class PerformanceRecord:
    """Rolling window for one model. Only touched while holding ``lock``."""

    model_id: str
    capacity: int
    samples: deque[Sample] = field(init=False)
    degraded_until: float | None = None
    consecutive_failures: int = 0
    last_error: str | None = None
    lock: threading.Lock = field(default_factory=threading.Lock)

    def __post_init__(self) -> None:
        self.samples = deque(maxlen=self.capacity)


def p95(latencies: list[float]) -> float | None:
    """Nearest-rank 95th percentile."""
    if not latencies:
        return None
    ordered = sorted(latencies)
    index = max(math.ceil(0.95 * len(ordered)) - 1, 0)
    return ordered[index]


class PerformanceMonitor:
    """Thread- and task-safe rolling statistics per model id."""

    def __init__(
        self,
        *,
        window_size: int = 100,
        success_floor: float = 0.5,
        min_samples: int = 5,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the monitor.

        Args:
            window_size: Outcomes kept per model (oldest evicted first)
            success_floor: Success rate below which a model degrades
            min_samples: Outcomes required before the floor applies
            cooldown_seconds: How long a degraded model stays excluded
            clock: Monotonic time source (injectable for tests)
        """
        if window_size < 1:
            raise ValueError("window_size must be positive")
        self._window_size = window_size
        self._success_floor = success_floor
        self._min_samples = min_samples
        self._cooldown = cooldown_seconds
        self._clock = clock

        self._records: dict[str, PerformanceRecord] = {}
        self._records_lock = threading.Lock()
        self._subscribers: dict[asyncio.Queue[PerformanceEvent], asyncio.AbstractEventLoop] = {}
        self._subscribers_lock = threading.Lock()
        self._dropped_events = 0

        log.info(
            "performance_monitor.initialized",
            window_size=window_size,
            success_floor=success_floor,
            min_samples=min_samples,
            cooldown_seconds=cooldown_seconds,
        )

    def _record_for(self, model_id: str) -> PerformanceRecord:
        record = self._records.get(model_id)
        if record is None:
            with self._records_lock:
                record = self._records.get(model_id)
                if record is None:
                    record = PerformanceRecord(model_id=model_id, capacity=self._window_size)
                    self._records[model_id] = record
        return record

    def record(
        self,
        model_id: str,
        success: bool,
        latency_ms: float,
        error_type: str | None = None,
    ) -> None:
        """Append one attempt outcome for ``model_id``.

        Safe to call concurrently from any number of tasks or threads.

        Args:
            model_id: Model that served (or failed) the attempt
            success: Whether the attempt produced content
            latency_ms: Wall time of the attempt
            error_type: Exception class name for failures
        """
        record = self._record_for(model_id)
        now = self._clock()
        newly_degraded = False

        with record.lock:
            record.samples.append(Sample(success=success, latency_ms=latency_ms))
            if success:
                record.consecutive_failures = 0
            else:
                record.consecutive_failures += 1
                record.last_error = error_type
                if not self._is_degraded(record, now):
                    total = len(record.samples)
                    successes = sum(1 for s in record.samples if s.success)
                    if total >= self._min_samples and successes / total < self._success_floor:
                        record.degraded_until = now + self._cooldown
                        newly_degraded = True
            degraded = self._is_degraded(record, now)

        if newly_degraded:
            log.warning(
                "performance_monitor.degraded",
                model_id=model_id,
                cooldown_seconds=self._cooldown,
                consecutive_failures=record.consecutive_failures,
            )

        self._publish(
            PerformanceEvent(
                model_id=model_id,
                success=success,
                latency_ms=latency_ms,
                degraded=degraded,
                timestamp=now,
                error_type=error_type,
            )
        )

    @staticmethod
    def _is_degraded(record: PerformanceRecord, now: float) -> bool:
        return record.degraded_until is not None and now < record.degraded_until

    def snapshot(self, model_id: str) -> ModelStats:
        """Return an immutable copy of the model's current statistics."""
        record = self._records.get(model_id)
        if record is None:
            return ModelStats(model_id=model_id)

        now = self._clock()
        with record.lock:
            samples = list(record.samples)
            degraded_until = record.degraded_until
            consecutive = record.consecutive_failures
            last_error = record.last_error

        total = len(samples)
        successes = sum(1 for s in samples if s.success)
        latencies = [s.latency_ms for s in samples]
        degraded = degraded_until is not None and now < degraded_until

        return ModelStats(
            model_id=model_id,
            samples=total,
            successes=successes,
            failures=total - successes,
            success_rate=(successes / total) if total else None,
            avg_latency_ms=(sum(latencies) / total) if total else None,
            p95_latency_ms=p95(latencies),
            consecutive_failures=consecutive,
            last_error=last_error,
            degraded=degraded,
            degraded_until=degraded_until if degraded else None,
        )

    def snapshot_all(self) -> dict[str, ModelStats]:
        """Snapshot every model seen so far."""
        with self._records_lock:
            model_ids = list(self._records)
        return {model_id: self.snapshot(model_id) for model_id in model_ids}

    def is_degraded(self, model_id: str) -> bool:
        return self.snapshot(model_id).degraded

    def reset(self, model_id: str | None = None) -> None:
        """Forget history for one model, or all models. Used for testing."""
        with self._records_lock:
            if model_id is None:
                self._records.clear()
            else:
                self._records.pop(model_id, None)
        log.debug("performance_monitor.reset", model_id=model_id or "all")

    # ------------------------------------------------------------------ #
    # Fan-out
    # ------------------------------------------------------------------ #

    def subscribe(self, maxsize: int = 100) -> asyncio.Queue[PerformanceEvent]:
        """Register a bounded queue that receives every PerformanceEvent.

        Call from the event loop that will consume the queue. Records made on
        other threads are handed to that loop with ``call_soon_threadsafe``.
        """
        if maxsize < 1:
            raise ValueError("subscriber queues must be bounded (maxsize >= 1)")
        queue: asyncio.Queue[PerformanceEvent] = asyncio.Queue(maxsize=maxsize)
        loop = asyncio.get_running_loop()
        with self._subscribers_lock:
            self._subscribers[queue] = loop
        return queue

    def unsubscribe(self, queue: asyncio.Queue[PerformanceEvent]) -> None:
        with self._subscribers_lock:
            self._subscribers.pop(queue, None)

    def _publish(self, event: PerformanceEvent) -> None:
        with self._subscribers_lock:
            subscribers = list(self._subscribers.items())
        if not subscribers:
            return

        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None

        for queue, loop in subscribers:
            if loop is current:
                self._offer(queue, event)
                continue
            try:
                loop.call_soon_threadsafe(self._offer, queue, event)
            except RuntimeError:
                # Subscriber's loop is closed.
                self._count_dropped()

    def _offer(self, queue: asyncio.Queue[PerformanceEvent], event: PerformanceEvent) -> None:
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            self._count_dropped()

    def _count_dropped(self) -> None:
        with self._subscribers_lock:
            self._dropped_events += 1

    @property
    def dropped_events(self) -> int:
        return self._dropped_events
