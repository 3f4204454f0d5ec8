"""Retry utilities with exponential backoff."""

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

__all__ = ["RetryConfig", "RetryExhausted", "calculate_delay", "retry_with_backoff"]

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """How many times, and how patiently, to retry an upload."""

    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    exponential_base: float = 2.0
    jitter: bool = True


class RetryExhausted(Exception):
    """All retry attempts exhausted."""

    def __init__(self, attempts: int, last_error: Optional[Exception] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up after {attempts} attempts")


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Delay before retry number `attempt` (0-indexed).

    Grows as base_delay * exponential_base ** attempt, capped at max_delay,
    with +/- 25% jitter when enabled.
    """
    delay = min(config.base_delay * (config.exponential_base ** attempt), config.max_delay)

    if config.jitter:
        spread = delay * 0.25
        delay += random.uniform(-spread, spread)

    return max(0.0, delay)


def retry_with_backoff(
    func: Callable[[], T],
    config: Optional[RetryConfig] = None,
    retryable_exceptions: tuple = (Exception,),
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """Call `func` until it succeeds or the retry budget runs out.

    Only exceptions in `retryable_exceptions` are retried; anything else
    propagates immediately.

    Raises:
        RetryExhausted: If every attempt failed with a retryable error
    """
    config = config or RetryConfig()
    last_error: Optional[Exception] = None

    for attempt in range(config.max_retries + 1):
        try:
            return func()
        except retryable_exceptions as e:
            last_error = e
            if attempt >= config.max_retries:
                break

            delay = calculate_delay(attempt, config)
            if on_retry:
                on_retry(attempt, e, delay)
            else:
                logger.warning(f"Attempt {attempt + 1} failed: {e}. Retrying in {delay:.1f}s...")
            (sleep or time.sleep)(delay)

    raise RetryExhausted(config.max_retries + 1, last_error)
