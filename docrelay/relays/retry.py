"""Retry and backoff policy for relay attempts."""

from __future__ import annotations

import random
from dataclasses import dataclass, field

from ..config import Settings


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded attempts with exponential backoff and proportional jitter.

    The delay after failed attempt n (1-based) is
    ``min(base_delay * multiplier ** (n - 1), max_delay)`` scaled by a random
    factor in ``[1 - jitter, 1 + jitter]``.
    """

    max_retries: int = 3  # retries after the first attempt
    base_delay: float = 2.0
    multiplier: float = 1.5
    max_delay: float = 15.0
    jitter: float = 0.25
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.base_delay,
            multiplier=settings.backoff_multiplier,
            max_delay=settings.max_delay,
            jitter=settings.jitter,
        )

    def base(self, attempt: int) -> float:
        """Delay before jitter after the given failed attempt."""
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)

    def delay(self, attempt: int) -> float:
        delay = self.base(attempt)
        if self.jitter:
            delay *= 1 + self.rng.uniform(-self.jitter, self.jitter)
        return max(delay, 0.0)

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def should_retry(self, attempt: int) -> bool:
        return attempt <= self.max_retries
