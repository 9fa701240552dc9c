"""Backoff policy for optimistic concurrency conflicts.

A conflicting write means another process updated the same key between our
read and our conditional write. The update is simply recomputed; a short,
growing pause between attempts keeps hot keys from livelocking.
"""

import random
from dataclasses import dataclass


@dataclass
class ConflictRetryPolicy:
    """Configuration for conflict retries with exponential backoff.

    Attributes:
        max_attempts: Total attempts including the first one (default: 5)
        base_delay: Delay after the first conflict in seconds (default: 0.002)
        max_delay: Maximum delay between attempts in seconds (default: 0.05)
        exponential_base: Base for exponential calculation (default: 2.0)
        jitter: Fraction of the delay randomised to spread out writers

    Example:
        >>> policy = ConflictRetryPolicy(base_delay=0.01, jitter=0.0)
        >>> policy.calculate_delay(attempt=2)
        0.04
    """

    max_attempts: int = 5
    base_delay: float = 0.002
    max_delay: float = 0.05
    exponential_base: float = 2.0
    jitter: float = 0.5

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def calculate_delay(self, attempt: int) -> float:
        """Delay after the given failed attempt (0-indexed).

        delay = min(base_delay * (exponential_base ^ attempt), max_delay),
        reduced by up to ``jitter`` of itself.
        """
        delay = min(self.base_delay * (self.exponential_base**attempt), self.max_delay)
        if self.jitter:
            delay -= delay * self.jitter * random.random()
        return delay

    def should_retry(self, attempt: int) -> bool:
        """Whether another attempt may follow the given failed attempt."""
        return attempt + 1 < self.max_attempts
