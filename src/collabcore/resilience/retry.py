"""
Retry policy: how long to wait before the next attempt, per error category.
"""

from __future__ import annotations

import random
from dataclasses import dataclass

from ..config import RetryConfig
from ..errors import RateLimitError
from .classifier import ErrorCategory


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    initial_delay: float = 0.5
    max_delay: float = 30.0
    exponential_base: float = 2.0
    rate_limit_wait: float = 1.0
    unknown_retries: int = 1
    jitter: float = 0.0

    @classmethod
    def from_config(cls, config: RetryConfig) -> RetryPolicy:
        return cls(
            max_attempts=config.max_attempts,
            initial_delay=config.initial_delay,
            max_delay=config.max_delay,
            exponential_base=config.exponential_base,
            rate_limit_wait=config.rate_limit_wait,
            unknown_retries=config.unknown_retries,
            jitter=config.jitter,
        )

    def should_retry(self, category: ErrorCategory, attempt: int) -> bool:
        """Whether attempt number *attempt* (1-based) may be followed by another."""
        if category in (ErrorCategory.TRANSIENT, ErrorCategory.RATE_LIMIT):
            return attempt < self.max_attempts
        if category == ErrorCategory.UNKNOWN:
            return attempt <= self.unknown_retries
        return False

    def backoff(self, attempt: int) -> float:
        """Exponential delay after attempt number *attempt* (1-based)."""
        delay = min(self.initial_delay * (self.exponential_base ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay += delay * self.jitter * random.random()
        return delay

    def delay_for(self, category: ErrorCategory, attempt: int, exc: BaseException) -> float:
        if category == ErrorCategory.RATE_LIMIT:
            retry_after = exc.retry_after if isinstance(exc, RateLimitError) else None
            return retry_after if retry_after is not None else self.rate_limit_wait
        return self.backoff(attempt)
