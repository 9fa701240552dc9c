"""Leaky Bucket rate limiting algorithm.

The bucket level drains at ``rate_per_second`` and every admitted request
raises it by its cost. A request is admitted only if it fits under the
limit. Caps sustained throughput regardless of input burstiness, for
downstreams whose intake must stay constant.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from quotaguard.algorithms.base import LimiterState, RateLimitStrategy, Verdict
from quotaguard.core.utils import elapsed_since
from quotaguard.policy.models import Algorithm, Policy


@dataclass
class LeakyBucketState(LimiterState):
    """Leaky bucket state.

    Attributes:
        level: Current fill level
        last_leak: Epoch seconds of the last leak computation
    """

    level: float
    last_leak: float


class LeakyBucketStrategy(RateLimitStrategy[LeakyBucketState]):
    """Leaky bucket (as a meter): admit iff ``level + cost <= limit``."""

    algorithm = Algorithm.LEAKY_BUCKET
    state_class = LeakyBucketState

    def decide(
        self,
        state: Optional[LeakyBucketState],
        policy: Policy,
        cost: int,
        now: float,
        *,
        system_load: Optional[float] = None,
    ) -> Tuple[LeakyBucketState, Verdict]:
        limit = policy.limit
        rate = policy.rate_per_second

        if state is None:
            level, last_leak = 0.0, now
        else:
            elapsed = elapsed_since(now, state.last_leak, "leaky bucket")
            level = max(0.0, state.level - elapsed * rate)
            last_leak = max(now, state.last_leak)

        if level + cost <= limit:
            level += cost
            allowed = True
            retry_after = None
        else:
            allowed = False
            retry_after = (level + cost - limit) / rate if rate > 0 else None

        reset_at = now + level / rate if rate > 0 else now
        new_state = LeakyBucketState(level=level, last_leak=last_leak)
        return new_state, Verdict(
            allowed=allowed,
            limit=limit,
            remaining=max(0, int(limit - level)),
            reset_at=reset_at,
            retry_after=retry_after,
        )
