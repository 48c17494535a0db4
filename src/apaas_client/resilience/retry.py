"""
Retry with exponential backoff for remote calls.

Delay before retry number ``n`` (0-based, counted from the first retry) is
``min(initial_delay_ms * backoff_multiplier ** n, max_delay_ms)``. No jitter
is applied.

Only transient failures are retried (no response, 5xx, 429). Anything else
propagates on the first failure.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import aiohttp

from apaas_client.errors import ApaasError, TransientRemoteError, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff policy for a call-site.

    Attributes:
        max_retries: Retries after the first attempt (total attempts = max_retries + 1).
        initial_delay_ms: Delay before the first retry.
        max_delay_ms: Upper bound for any single delay.
        backoff_multiplier: Growth factor between consecutive delays.
    """

    max_retries: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 10000
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValidationError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.initial_delay_ms <= 0:
            raise ValidationError(f"initial_delay_ms must be > 0, got {self.initial_delay_ms}")
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValidationError(
                f"max_delay_ms must be >= initial_delay_ms, got {self.max_delay_ms}"
            )
        if self.backoff_multiplier < 1:
            raise ValidationError(
                f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}"
            )

    @property
    def max_attempts(self) -> int:
        """Total attempts including the first one."""
        return self.max_retries + 1


DEFAULT_RETRY_POLICY = RetryPolicy()


def compute_retry_delay(policy: RetryPolicy, attempt_index: int) -> int:
    """
    Compute the delay before a retry.

    Args:
        policy: Retry policy.
        attempt_index: 0-based retry index (0 = delay before the first retry).

    Returns:
        Delay in milliseconds.
    """
    delay = policy.initial_delay_ms * (policy.backoff_multiplier**attempt_index)
    return int(min(delay, policy.max_delay_ms))


def is_transient_error(error: BaseException) -> bool:
    """
    Classify a failure as transient (worth retrying) or not.

    Transient: no response received (connection reset, timeout, DNS failure),
    a 5xx response, or 429. Everything else, including business failure
    codes and scheduler refusals, is permanent.
    """
    if isinstance(error, TransientRemoteError):
        return True
    if isinstance(error, ApaasError):
        return False

    if isinstance(error, aiohttp.ClientResponseError):
        return error.status >= 500 or error.status == 429
    if isinstance(error, aiohttp.ClientError):
        # Connection errors, disconnects, payload errors: no usable response
        return True

    return isinstance(error, (asyncio.TimeoutError, ConnectionError, socket.gaierror))


@dataclass
class RetryStats:
    """Counters for retry observability."""

    attempts: int = 0
    retries: int = 0
    exhausted: int = 0
    non_transient_failures: int = 0


class RetryExecutor:
    """
    Replays an async operation under a RetryPolicy.

    The sleep function is injectable so tests can record backoff delays
    without waiting.
    """

    def __init__(self, sleep: SleepFn | None = None) -> None:
        self._sleep: SleepFn = sleep or asyncio.sleep
        self.stats = RetryStats()

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
        context: str = "",
    ) -> T:
        """
        Run operation, retrying transient failures.

        Args:
            operation: Zero-argument coroutine factory. Called once per attempt.
            policy: Retry policy (default: 3 retries, 1s initial, 10s cap, x2).
            context: Label used in log records.

        Returns:
            The operation's result.

        Raises:
            The last observed failure once attempts are exhausted, or the first
            non-transient failure.
        """
        policy = policy or DEFAULT_RETRY_POLICY

        for attempt in range(policy.max_attempts):
            self.stats.attempts += 1
            try:
                return await operation()
            except Exception as e:
                if not is_transient_error(e):
                    self.stats.non_transient_failures += 1
                    raise

                if attempt == policy.max_retries:
                    self.stats.exhausted += 1
                    if policy.max_retries > 0:
                        logger.error(
                            "Retries exhausted",
                            extra={
                                "context": context,
                                "attempts": policy.max_attempts,
                                "error": str(e),
                            },
                        )
                    raise

                delay_ms = compute_retry_delay(policy, attempt)
                self.stats.retries += 1
                logger.warning(
                    "%s attempt %d/%d failed, retrying in %dms",
                    context or "operation",
                    attempt + 1,
                    policy.max_attempts,
                    delay_ms,
                    extra={"error_type": type(e).__name__, "error": str(e)},
                )
                await self._sleep(delay_ms / 1000)

        # Loop always returns or raises; max_attempts >= 1
        raise AssertionError("unreachable")
