"""
Retry and backoff utilities for provider calls.

Status checks against a provider are retried with exponential backoff
and jitter before a ProviderError is surfaced to the caller. The same
delay calculation drives the PROGRESS flow's polling interval.

Usage:
    from sardis_paygate.retry import RetryConfig, retry_async

    config = RetryConfig(max_retries=2, base_delay=0.5)
    status = await retry_async(provider.get_payment_status, payment_id, config=config)
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, ParamSpec, Type, TypeVar

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

DEFAULT_MAX_RETRIES = 2
DEFAULT_BASE_DELAY = 0.5
DEFAULT_MAX_DELAY = 10.0
DEFAULT_EXPONENTIAL_BASE = 2.0
DEFAULT_JITTER = 0.1


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_retries: Maximum number of retry attempts (0 means no retries)
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential backoff calculation
        jitter: Maximum jitter factor (0.0-1.0) applied to delays
        retryable_exceptions: Exception types that trigger retries
        non_retryable_exceptions: Exception types that are raised immediately
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    exponential_base: float = DEFAULT_EXPONENTIAL_BASE
    jitter: float = DEFAULT_JITTER
    retryable_exceptions: tuple[Type[BaseException], ...] = (Exception,)
    non_retryable_exceptions: tuple[Type[BaseException], ...] = ()

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for the given attempt number (0-based).

        Uses exponential backoff capped at ``max_delay`` with jitter.
        """
        delay = self.base_delay * (self.exponential_base ** attempt)
        delay = min(delay, self.max_delay)

        if self.jitter > 0:
            jitter_range = delay * self.jitter
            delay = delay + random.uniform(-jitter_range, jitter_range)

        return max(0.0, delay)

    def should_retry(self, exception: BaseException) -> bool:
        if isinstance(exception, self.non_retryable_exceptions):
            return False
        return isinstance(exception, self.retryable_exceptions)


class RetryExhausted(Exception):
    """Raised when all retry attempts have been exhausted."""

    def __init__(self, message: str, attempts: int, original_exception: BaseException) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.original_exception = original_exception


async def retry_async(
    func: Callable[P, Awaitable[T]],
    *args: P.args,
    config: Optional[RetryConfig] = None,
    **kwargs: P.kwargs,
) -> T:
    """Execute an async function with retry logic.

    Raises:
        RetryExhausted: If all retry attempts fail
    """
    if config is None:
        config = RetryConfig()

    last_exception: Optional[BaseException] = None
    name = getattr(func, "__qualname__", repr(func))

    for attempt in range(config.max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_exception = e

            if attempt >= config.max_retries:
                break

            if not config.should_retry(e):
                logger.debug(f"Exception {type(e).__name__} is not retryable, raising immediately")
                raise

            delay = config.calculate_delay(attempt)
            logger.warning(
                f"Retry {attempt + 1}/{config.max_retries} for {name} "
                f"after {type(e).__name__}: {e}. Waiting {delay:.2f}s"
            )
            await asyncio.sleep(delay)

    raise RetryExhausted(
        f"All {config.max_retries + 1} attempts failed for {name}",
        attempts=config.max_retries + 1,
        original_exception=last_exception,
    ) from last_exception
