"""Retry with exponential backoff for n8n API calls.

The HTTP client performs single attempts; callers wrap them with
``retry_async`` and a ``RetryPolicy``. Only retryable failures (network,
timeout, rate limiting, 5xx) are retried.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from n8n_transfer.core.errors import classify_error, is_retryable
from n8n_transfer.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Exponential backoff policy.

    Attributes:
        max_attempts: Attempt ceiling, including the first attempt
        base_delay: Delay before the second attempt, in seconds
        multiplier: Growth factor between consecutive delays
        max_delay: Upper bound for the exponential part of the delay
        jitter: Upper bound of the random delay added to each wait
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.5

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0 or self.jitter < 0:
            raise ValueError("Delays must not be negative")

    def compute_delay(self, attempt: int) -> float:
        """Delay to wait after a failed attempt.

        Args:
            attempt: Number of the attempt that just failed (1-based)

        Returns:
            Seconds to wait before the next attempt
        """
        delay = min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay += random.uniform(0, self.jitter)
        return delay

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        """Build a policy from ``TransferSettings``."""
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.backoff_base,
            max_delay=settings.backoff_max,
        )


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    should_continue: Optional[Callable[[], bool]] = None,
    on_attempt: Optional[Callable[[int], None]] = None,
    retryable: Callable[[BaseException], bool] = is_retryable,
    description: str = "operation",
) -> T:
    """Run an async operation, retrying retryable failures.

    Args:
        operation: Zero-argument coroutine factory performing one attempt
        policy: Backoff policy
        should_continue: Checked before every retry; returning False stops
            retrying and re-raises the last error
        on_attempt: Called with the attempt number before each attempt
        retryable: Predicate deciding whether an error is worth retrying
        description: Label used in log events

    Returns:
        Result of the first successful attempt

    Raises:
        Exception: The last error once retries are exhausted, the error is
            not retryable, or ``should_continue`` returned False
    """
    attempt = 0
    while True:
        attempt += 1
        if on_attempt is not None:
            on_attempt(attempt)
        try:
            result = await operation()
        except Exception as e:
            if not retryable(e):
                logger.warning(
                    "retry_not_retryable",
                    operation=description,
                    attempt=attempt,
                    error=str(e),
                    code=classify_error(e).value,
                )
                raise
            if attempt >= policy.max_attempts:
                logger.warning(
                    "retry_exhausted",
                    operation=description,
                    attempts=attempt,
                    error=str(e),
                )
                raise
            if should_continue is not None and not should_continue():
                logger.info("retry_aborted", operation=description, attempt=attempt)
                raise

            delay = policy.compute_delay(attempt)
            logger.info(
                "retry_scheduled",
                operation=description,
                attempt=attempt,
                delay_seconds=round(delay, 3),
                error=str(e),
            )
            await asyncio.sleep(delay)
            if should_continue is not None and not should_continue():
                logger.info("retry_aborted", operation=description, attempt=attempt)
                raise
        else:
            return result
