"""
Bounded retries with exponential backoff.

The workflow engine retries activity calls that fail transiently and
order writes that lose an optimistic-concurrency race. Both go through
``retry_async``; what counts as retryable is decided by the caller.

    >>> await retry_async(
    ...     lambda: payment.capture(order_id, method, amount, reference_id),
    ...     config=RetryConfig(max_retries=2),
    ...     operation_name="payment.capture",
    ... )
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any, TypeVar

from orderflow.exceptions import ActivityTransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_EXCEPTIONS: tuple[type[Exception], ...] = (
    ActivityTransientError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)
"""Failures worth another attempt: the remote side may succeed next time."""


@dataclass(frozen=True)
class RetryConfig:
    """
    Backoff settings.

    Attributes:
        max_retries: Attempts after the first one (0 disables retrying)
        initial_delay: Seconds to wait before the first retry
        max_delay: Upper bound for any single wait
        exponential_base: Growth factor between waits
        jitter: Fraction of each wait randomized in both directions (0-1)
    """

    max_retries: int = 3
    initial_delay: float = 0.5
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: float = 0.1

    def __post_init__(self) -> None:
        problems = []
        if self.max_retries < 0:
            problems.append(f"max_retries must be >= 0, got {self.max_retries}")
        if self.initial_delay <= 0:
            problems.append(f"initial_delay must be positive, got {self.initial_delay}")
        if self.max_delay <= 0:
            problems.append(f"max_delay must be positive, got {self.max_delay}")
        elif self.max_delay < self.initial_delay:
            problems.append(
                f"max_delay ({self.max_delay}) must be >= initial_delay ({self.initial_delay})"
            )
        if self.exponential_base <= 1.0:
            problems.append(f"exponential_base must be > 1.0, got {self.exponential_base}")
        if not 0.0 <= self.jitter <= 1.0:
            problems.append(f"jitter must be between 0.0 and 1.0, got {self.jitter}")
        if problems:
            raise ValueError("; ".join(problems))

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


@dataclass
class RetryStats:
    """Counters for one ``retry_async`` call."""

    attempts: int = 0
    successes: int = 0
    failures: int = 0
    total_delay_seconds: float = 0.0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class RetryError(Exception):
    """
    Every attempt failed with a retryable error.

    Attributes:
        attempts: Number of attempts made
        last_error: Error raised by the final attempt
    """

    def __init__(self, message: str, attempts: int, last_error: Exception) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


def calculate_backoff(attempt: int, config: RetryConfig) -> float:
    """
    Seconds to wait after the failed ``attempt`` (0-based).

    ``initial_delay * exponential_base ** attempt``, capped at ``max_delay``,
    then spread by ``jitter``. Never negative.
    """
    base = min(config.initial_delay * config.exponential_base**attempt, config.max_delay)
    spread = base * config.jitter
    return max(0.0, base + random.uniform(-spread, spread))  # nosec B311 - not crypto


def is_retryable_exception(
    exception: BaseException,
    retryable_exceptions: tuple[type[Exception], ...] = TRANSIENT_EXCEPTIONS,
) -> bool:
    return isinstance(exception, retryable_exceptions)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    retryable_exceptions: tuple[type[Exception], ...] = TRANSIENT_EXCEPTIONS,
    operation_name: str = "operation",
) -> T:
    """
    Await ``operation`` until it succeeds or the attempts run out.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        config: Backoff settings (defaults to ``RetryConfig()``)
        retryable_exceptions: Errors that trigger another attempt
        operation_name: Label used in log records

    Raises:
        RetryError: When the last allowed attempt fails with a retryable error
        Exception: Any other error, as soon as it is raised
    """
    config = config or RetryConfig()
    stats = RetryStats()

    while True:
        stats.attempts += 1
        try:
            result = await operation()
        except retryable_exceptions as e:
            stats.failures += 1
            stats.last_error = str(e)
            if stats.attempts >= config.max_attempts:
                logger.error(
                    "%s failed after %d attempt(s): %s",
                    operation_name,
                    stats.attempts,
                    e,
                    extra={"operation": operation_name, **stats.to_dict()},
                )
                raise RetryError(
                    f"Failed after {stats.attempts} attempts: {e}",
                    attempts=stats.attempts,
                    last_error=e,
                ) from e

            delay = calculate_backoff(stats.attempts - 1, config)
            stats.total_delay_seconds += delay
            logger.warning(
                "%s attempt %d/%d failed (%s), retrying in %.3fs",
                operation_name,
                stats.attempts,
                config.max_attempts,
                type(e).__name__,
                delay,
                extra={"operation": operation_name, "attempt": stats.attempts, "error": str(e)},
            )
            await asyncio.sleep(delay)
            continue

        stats.successes += 1
        if stats.attempts > 1:
            logger.info(
                "%s succeeded on attempt %d",
                operation_name,
                stats.attempts,
                extra={"operation": operation_name, "attempt": stats.attempts},
            )
        return result


__all__ = [
    "RetryConfig",
    "RetryStats",
    "RetryError",
    "calculate_backoff",
    "retry_async",
    "is_retryable_exception",
    "TRANSIENT_EXCEPTIONS",
]
