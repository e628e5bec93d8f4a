"""Bounded exponential backoff for retryable step failures."""

from __future__ import annotations

import random
from dataclasses import dataclass

_DEFAULT_MAX_ATTEMPTS = 4
_DEFAULT_BASE_DELAY = 1.0  # seconds
_DEFAULT_MAX_DELAY = 8.0  # seconds


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry budget for one step.

    ``max_attempts`` counts every invocation including the first, so a
    policy of 4 means one call plus at most three retries.
    """

    max_attempts: int = _DEFAULT_MAX_ATTEMPTS
    base_delay: float = _DEFAULT_BASE_DELAY
    max_delay: float = _DEFAULT_MAX_DELAY
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError('max_attempts must be >= 1')
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError('delays must be >= 0')

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based).

        Exponential backoff with full jitter, capped at ``max_delay``.
        """
        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        if self.jitter:
            return random.uniform(0, delay)
        return delay

    def should_retry(self, attempts_made: int) -> bool:
        return attempts_made < self.max_attempts
