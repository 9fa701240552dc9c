"""Adaptive rate limiting algorithm.

A token bucket whose refill rate follows an externally observed system load
in [0, 1]. The effective rate is interpolated linearly between ``max_rate``
(idle system) and ``min_rate`` (saturated system), so the limiter protects
a downstream resource whose real capacity fluctuates rather than enforcing
a fixed client-side contract.

Load smoothing:
    Raw samples are smoothed with a time-based exponential moving average
    kept in the client's state: ``alpha = 1 - exp(-elapsed / tau)`` where
    ``tau`` is ``policy.load_smoothing_seconds``. The first sample is taken
    as-is. Checks arriving in quick succession therefore move the smoothed
    load only slightly, and a long-idle client picks up the latest sample.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from quotaguard.algorithms.base import LimiterState, RateLimitStrategy, Verdict
from quotaguard.algorithms.token_bucket import TokenBucketState, consume, refill
from quotaguard.core.utils import elapsed_since
from quotaguard.policy.models import Algorithm, Policy


@dataclass
class AdaptiveState(LimiterState):
    """Adaptive state.

    Attributes:
        bucket: Underlying token bucket state
        load: Smoothed system load in [0, 1]
        last_sample: Epoch seconds of the last smoothing step
    """

    bucket: TokenBucketState
    load: float
    last_sample: float

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AdaptiveState":
        return cls(
            bucket=TokenBucketState.from_dict(data["bucket"]),
            load=float(data["load"]),
            last_sample=float(data["last_sample"]),
        )


def clamp_load(value: Optional[float]) -> float:
    if value is None or math.isnan(value):
        return 0.0
    return min(1.0, max(0.0, float(value)))


def smooth_load(
    previous: Optional[float], sample: float, elapsed: float, tau: float
) -> float:
    """One step of the time-based exponential moving average."""
    if previous is None:
        return sample
    alpha = 1.0 - math.exp(-elapsed / tau)
    return previous + alpha * (sample - previous)


def effective_rate(policy: Policy, load: float) -> float:
    """Refill rate for a given smoothed load."""
    return policy.max_rate - (policy.max_rate - policy.min_rate) * load


class AdaptiveStrategy(RateLimitStrategy[AdaptiveState]):
    """Token bucket with a load-dependent refill rate."""

    algorithm = Algorithm.ADAPTIVE
    state_class = AdaptiveState

    def decide(
        self,
        state: Optional[AdaptiveState],
        policy: Policy,
        cost: int,
        now: float,
        *,
        system_load: Optional[float] = None,
    ) -> Tuple[AdaptiveState, Verdict]:
        sample = clamp_load(system_load)
        limit = policy.limit

        if state is None:
            load = smooth_load(None, sample, 0.0, policy.load_smoothing_seconds)
            previous_bucket = None
            last_sample = now
        else:
            elapsed = elapsed_since(now, state.last_sample, "adaptive load")
            load = smooth_load(
                state.load, sample, elapsed, policy.load_smoothing_seconds
            )
            previous_bucket = state.bucket
            last_sample = max(now, state.last_sample)

        # Refill since the last check uses the freshly recomputed rate
        rate = effective_rate(policy, load)
        bucket = refill(previous_bucket, limit, rate, now)
        new_bucket, verdict = consume(bucket, limit, rate, cost, now)

        return AdaptiveState(bucket=new_bucket, load=load, last_sample=last_sample), verdict
