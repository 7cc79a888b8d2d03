"""
Bounded retries with exponential backoff.

orderflow retries in two places only:

- the payment coordinator, around gateway calls that time out or fail
  transiently (``GatewayUnavailable``);
- the reservation manager and order repository, around appends that lose
  an optimistic-concurrency race (``OptimisticLockError``).

Both pass the exception types they consider retryable; anything else
propagates on the first attempt.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Used when the caller does not name its own retryable errors
DEFAULT_RETRYABLE: tuple[type[Exception], ...] = (ConnectionError, TimeoutError)


@dataclass
class RetryConfig:
    """
    How often and how patiently to retry.

    ``max_retries`` counts retries, not attempts: ``max_retries=2`` makes
    at most three calls.

    Attributes:
        max_retries: Retries after the first attempt (0 disables retrying)
        initial_delay: Seconds to wait before the first retry
        max_delay: Upper bound for any single wait
        exponential_base: Growth factor of the wait between retries
        jitter: Fraction of each wait randomized up or down (0-1)
    """

    max_retries: int = 3
    initial_delay: float = 0.5
    max_delay: float = 5.0
    exponential_base: float = 2.0
    jitter: float = 0.1

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}.")
        if self.initial_delay <= 0 or self.max_delay <= 0:
            raise ValueError(
                f"delays must be positive, got initial_delay={self.initial_delay}, "
                f"max_delay={self.max_delay}."
            )
        if self.max_delay < self.initial_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= initial_delay ({self.initial_delay})."
            )
        if self.exponential_base <= 1.0:
            raise ValueError(f"exponential_base must be > 1.0, got {self.exponential_base}.")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError(f"jitter must be between 0.0 and 1.0, got {self.jitter}.")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


class RetryError(Exception):
    """
    Every attempt failed with a retryable error.

    Attributes:
        attempts: Calls made, including the first
        last_error: Error raised by the final call
    """

    def __init__(self, message: str, attempts: int, last_error: Exception) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


def calculate_backoff(attempt: int, config: RetryConfig) -> float:
    """Seconds to wait after the 0-based ``attempt`` failed."""
    delay = min(config.initial_delay * config.exponential_base**attempt, config.max_delay)
    spread = delay * config.jitter
    return max(0.0, delay + random.uniform(-spread, spread))  # nosec B311


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    retryable_exceptions: tuple[type[Exception], ...] = DEFAULT_RETRYABLE,
    operation_name: str = "operation",
) -> T:
    """
    Await ``operation`` until it succeeds or the retries run out.

    Raises:
        RetryError: If every attempt raised one of ``retryable_exceptions``
        Exception: Any other error, unchanged, on the attempt that raised it
    """
    config = config or RetryConfig()

    for attempt in range(config.max_attempts):
        try:
            result = await operation()
        except retryable_exceptions as e:
            if attempt + 1 >= config.max_attempts:
                logger.error(
                    "%s failed after %d attempts: %s",
                    operation_name,
                    attempt + 1,
                    e,
                    extra={
                        "operation": operation_name,
                        "attempts": attempt + 1,
                        "error_type": type(e).__name__,
                    },
                )
                raise RetryError(
                    f"{operation_name} failed after {attempt + 1} attempts: {e}",
                    attempts=attempt + 1,
                    last_error=e,
                ) from e

            delay = calculate_backoff(attempt, config)
            logger.warning(
                "%s failed (attempt %d of %d), retrying in %.3fs: %s",
                operation_name,
                attempt + 1,
                config.max_attempts,
                delay,
                e,
                extra={
                    "operation": operation_name,
                    "attempt": attempt + 1,
                    "delay_seconds": delay,
                    "error_type": type(e).__name__,
                },
            )
            await asyncio.sleep(delay)
            continue

        if attempt > 0:
            logger.info(
                "%s succeeded on attempt %d",
                operation_name,
                attempt + 1,
                extra={"operation": operation_name, "attempt": attempt + 1},
            )
        return result

    raise AssertionError("unreachable")  # pragma: no cover


__all__ = [
    "DEFAULT_RETRYABLE",
    "RetryConfig",
    "RetryError",
    "calculate_backoff",
    "retry_async",
]
