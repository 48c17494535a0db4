"""
Admission gate for remote calls issued by one client instance.

The CallScheduler bounds how many calls are in flight at once and,
optionally, how many may start within a sliding interval. Admission is FIFO:
a caller that submits calls one after another always sees them admitted in
submission order, while unrelated call-sites sharing the scheduler are
interleaved in arrival order.

State is local to one scheduler instance. Nothing is shared across
processes.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

from apaas_client.errors import SchedulerDroppedError, SchedulerTimeoutError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SchedulerConfig:
    """Configuration for the call scheduler.

    Attributes:
        max_concurrent: Maximum calls in flight at once (1 = fully serialized).
        requests_per_interval: Maximum admissions per sliding interval (None = no cap).
        interval_ms: Length of the sliding interval.
        max_queue_depth: Maximum callers waiting for admission (None = unbounded).
        admission_timeout_ms: Default maximum wait for admission (None = wait forever).
    """

    max_concurrent: int = 1
    requests_per_interval: int | None = None
    interval_ms: int = 1000
    max_queue_depth: int | None = None
    admission_timeout_ms: int | None = None

    def __post_init__(self) -> None:
        if self.max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {self.max_concurrent}")
        if self.requests_per_interval is not None and self.requests_per_interval < 1:
            raise ValueError(
                f"requests_per_interval must be >= 1, got {self.requests_per_interval}"
            )
        if self.interval_ms <= 0:
            raise ValueError(f"interval_ms must be > 0, got {self.interval_ms}")
        if self.max_queue_depth is not None and self.max_queue_depth < 0:
            raise ValueError(f"max_queue_depth must be >= 0, got {self.max_queue_depth}")
        if self.admission_timeout_ms is not None and self.admission_timeout_ms <= 0:
            raise ValueError(
                f"admission_timeout_ms must be > 0, got {self.admission_timeout_ms}"
            )


@dataclass
class SchedulerMetrics:
    """Counters and gauges for scheduler observability."""

    # Counters
    requests_admitted: int = 0
    requests_deferred: int = 0  # Waited in queue, then admitted
    requests_dropped: int = 0  # Rejected because the queue was full
    requests_timed_out: int = 0

    # Gauges
    current_queue_depth: int = 0
    current_in_flight: int = 0

    # Wait time accumulators
    total_wait_ms: int = 0
    max_wait_ms: int = 0


@dataclass
class _Waiter:
    """A caller waiting for admission."""

    label: str
    enqueue_time_ms: int
    event: asyncio.Event = field(default_factory=asyncio.Event)


class CallScheduler:
    """
    FIFO admission gate with a concurrency cap and optional rate cap.

    Usage:
        scheduler = CallScheduler(SchedulerConfig(max_concurrent=1))
        result = await scheduler.schedule(lambda: transport.invoke(...))

        async with scheduler.permit("objects.list"):
            ...

    The operation's own failure always propagates unchanged. The scheduler
    only raises on its own refusals (SchedulerDroppedError,
    SchedulerTimeoutError).
    """

    def __init__(
        self,
        config: SchedulerConfig | None = None,
        *,
        time_fn: Callable[[], int] | None = None,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            config: Scheduler configuration.
            time_fn: Optional epoch-milliseconds clock for deterministic tests.
        """
        self.config = config or SchedulerConfig()
        self._time_fn = time_fn
        self._queue: deque[_Waiter] = deque()
        self._in_flight = 0
        self._admissions: deque[int] = deque()
        self.metrics = SchedulerMetrics()

    def _now_ms(self) -> int:
        """Get current time in milliseconds."""
        if self._time_fn is not None:
            return self._time_fn()
        return int(time.time() * 1000)

    def _prune_admissions(self, now_ms: int) -> None:
        """Drop admission timestamps that left the sliding interval."""
        cutoff = now_ms - self.config.interval_ms
        while self._admissions and self._admissions[0] <= cutoff:
            self._admissions.popleft()

    def _can_admit(self, now_ms: int) -> bool:
        if self._in_flight >= self.config.max_concurrent:
            return False
        if self.config.requests_per_interval is None:
            return True
        self._prune_admissions(now_ms)
        return len(self._admissions) < self.config.requests_per_interval

    def _rate_wait_ms(self, now_ms: int) -> int:
        """Time until the rate cap frees a slot (0 if not rate limited)."""
        if self.config.requests_per_interval is None:
            return 0
        self._prune_admissions(now_ms)
        if len(self._admissions) < self.config.requests_per_interval:
            return 0
        return max(1, self._admissions[0] + self.config.interval_ms - now_ms)

    def _admit(self, now_ms: int) -> None:
        self._in_flight += 1
        if self.config.requests_per_interval is not None:
            self._admissions.append(now_ms)
        self.metrics.requests_admitted += 1
        self.metrics.current_in_flight = self._in_flight

    def _wake_head(self) -> None:
        if self._queue:
            self._queue[0].event.set()

    async def acquire(self, label: str = "", timeout_ms: int | None = None) -> None:
        """
        Wait for admission.

        Args:
            label: Call-site label for log records.
            timeout_ms: Maximum wait (None = config default).

        Raises:
            SchedulerDroppedError: If the wait queue is full.
            SchedulerTimeoutError: If admission did not happen in time.
        """
        now_ms = self._now_ms()
        actual_timeout_ms = (
            timeout_ms if timeout_ms is not None else self.config.admission_timeout_ms
        )

        # Fast path: nobody waiting and capacity available
        if not self._queue and self._can_admit(now_ms):
            self._admit(now_ms)
            return

        if (
            self.config.max_queue_depth is not None
            and len(self._queue) >= self.config.max_queue_depth
        ):
            self.metrics.requests_dropped += 1
            logger.warning(
                "Scheduler queue full, call rejected",
                extra={"label": label, "queue_depth": len(self._queue)},
            )
            raise SchedulerDroppedError(
                f"Queue full ({self.config.max_queue_depth}), call rejected",
                queue_depth=len(self._queue),
            )

        waiter = _Waiter(label=label, enqueue_time_ms=now_ms)
        self._queue.append(waiter)
        self.metrics.current_queue_depth = len(self._queue)
        deadline_ms = now_ms + actual_timeout_ms if actual_timeout_ms is not None else None

        try:
            while True:
                now_ms = self._now_ms()
                at_head = self._queue[0] is waiter

                if at_head and self._can_admit(now_ms):
                    self._queue.popleft()
                    self._admit(now_ms)
                    waited_ms = now_ms - waiter.enqueue_time_ms
                    self.metrics.requests_deferred += 1
                    self.metrics.total_wait_ms += waited_ms
                    self.metrics.max_wait_ms = max(self.metrics.max_wait_ms, waited_ms)
                    # The next caller may fit too when max_concurrent > 1
                    self._wake_head()
                    return

                if deadline_ms is not None and now_ms >= deadline_ms:
                    waited_ms = now_ms - waiter.enqueue_time_ms
                    self.metrics.requests_timed_out += 1
                    raise SchedulerTimeoutError(
                        f"Timeout after {waited_ms}ms waiting for admission",
                        waited_ms=waited_ms,
                    )

                wait_s: float | None = None
                if at_head:
                    rate_wait_ms = self._rate_wait_ms(now_ms)
                    if rate_wait_ms > 0:
                        wait_s = rate_wait_ms / 1000
                if deadline_ms is not None:
                    remaining_s = (deadline_ms - now_ms) / 1000
                    wait_s = remaining_s if wait_s is None else min(wait_s, remaining_s)

                waiter.event.clear()
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(waiter.event.wait(), timeout=wait_s)
        finally:
            if waiter in self._queue:
                was_head = self._queue[0] is waiter
                self._queue.remove(waiter)
                if was_head:
                    self._wake_head()
            self.metrics.current_queue_depth = len(self._queue)

    def release(self) -> None:
        """
        Release an in-flight slot.

        Must be called once per successful acquire(). Prefer permit() or
        schedule(), which release automatically.
        """
        if self._in_flight > 0:
            self._in_flight -= 1
            self.metrics.current_in_flight = self._in_flight
        self._wake_head()

    @contextlib.asynccontextmanager
    async def permit(self, label: str = "", timeout_ms: int | None = None) -> AsyncIterator[None]:
        """
        Async context manager for safe acquire/release.

        Usage:
            async with scheduler.permit("page.list"):
                response = await transport.invoke(...)
        """
        await self.acquire(label, timeout_ms)
        try:
            yield
        finally:
            self.release()

    async def schedule(
        self,
        operation: Callable[[], Awaitable[T]],
        label: str = "",
        timeout_ms: int | None = None,
    ) -> T:
        """
        Run operation once admitted.

        Args:
            operation: Zero-argument coroutine factory.
            label: Call-site label for log records.
            timeout_ms: Maximum admission wait.

        Returns:
            The operation's result. Its exceptions propagate unchanged.
        """
        async with self.permit(label, timeout_ms):
            return await operation()

    def get_status(self) -> dict[str, int | None]:
        """Get current scheduler status for observability."""
        now_ms = self._now_ms()
        if self.config.requests_per_interval is not None:
            self._prune_admissions(now_ms)
        return {
            "in_flight": self._in_flight,
            "max_concurrent": self.config.max_concurrent,
            "queue_depth": len(self._queue),
            "queue_max": self.config.max_queue_depth,
            "admissions_in_interval": len(self._admissions),
            "requests_per_interval": self.config.requests_per_interval,
        }

    def reset(self) -> None:
        """Reset counters and rate window. Waiting callers are left queued."""
        self._admissions.clear()
        self.metrics = SchedulerMetrics(
            current_queue_depth=len(self._queue),
            current_in_flight=self._in_flight,
        )
