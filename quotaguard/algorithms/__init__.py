"""Rate limiting algorithms.

Exactly six strategies exist, one per ``Algorithm`` member. Dispatch goes
through ``get_strategy``; there is no open-ended subclass lookup.
"""

from types import MappingProxyType
from typing import Mapping

from quotaguard.algorithms.adaptive import AdaptiveState, AdaptiveStrategy
from quotaguard.algorithms.base import LimiterState, RateLimitStrategy, Verdict
from quotaguard.algorithms.fixed_window import FixedWindowState, FixedWindowStrategy
from quotaguard.algorithms.leaky_bucket import LeakyBucketState, LeakyBucketStrategy
from quotaguard.algorithms.sliding_counter import (
    SlidingCounterState,
    SlidingCounterStrategy,
)
from quotaguard.algorithms.sliding_log import SlidingLogState, SlidingLogStrategy
from quotaguard.algorithms.token_bucket import TokenBucketState, TokenBucketStrategy
from quotaguard.policy.models import Algorithm

STRATEGIES: Mapping[Algorithm, RateLimitStrategy] = MappingProxyType(
    {
        Algorithm.TOKEN_BUCKET: TokenBucketStrategy(),
        Algorithm.LEAKY_BUCKET: LeakyBucketStrategy(),
        Algorithm.FIXED_WINDOW: FixedWindowStrategy(),
        Algorithm.SLIDING_LOG: SlidingLogStrategy(),
        Algorithm.SLIDING_COUNTER: SlidingCounterStrategy(),
        Algorithm.ADAPTIVE: AdaptiveStrategy(),
    }
)


def get_strategy(algorithm: Algorithm | str) -> RateLimitStrategy:
    """Return the strategy enforcing ``algorithm``.

    Raises:
        ValueError: If the name is not one of the six supported algorithms
    """
    return STRATEGIES[Algorithm(algorithm)]


__all__ = [
    "STRATEGIES",
    "get_strategy",
    "Verdict",
    "LimiterState",
    "RateLimitStrategy",
    "TokenBucketState",
    "TokenBucketStrategy",
    "LeakyBucketState",
    "LeakyBucketStrategy",
    "FixedWindowState",
    "FixedWindowStrategy",
    "SlidingLogState",
    "SlidingLogStrategy",
    "SlidingCounterState",
    "SlidingCounterStrategy",
    "AdaptiveState",
    "AdaptiveStrategy",
]
