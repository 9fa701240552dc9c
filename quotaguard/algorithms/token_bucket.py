"""Token Bucket rate limiting algorithm.

Algorithm Overview:
    1. Bucket starts full (``policy.limit`` tokens)
    2. Tokens refill at ``rate_per_second``, never beyond the limit
    3. Each request consumes ``cost`` tokens
    4. Request allowed if enough tokens are available

Smooths bursts up to the bucket size with O(1) state.

Example:
    capacity=10, rate_per_second=1
    - t=0: 10 requests allowed, 0 remaining
    - t=0: 11th request denied, retry after 1s
    - t=1: 1 token refilled, next request allowed, 0 remaining
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from quotaguard.algorithms.base import LimiterState, RateLimitStrategy, Verdict
from quotaguard.core.utils import elapsed_since
from quotaguard.policy.models import Algorithm, Policy


@dataclass
class TokenBucketState(LimiterState):
    """Token bucket state.

    Attributes:
        tokens: Tokens currently in the bucket (fractional)
        last_refill: Epoch seconds of the last refill computation
    """

    tokens: float
    last_refill: float


def refill(
    state: Optional[TokenBucketState], limit: float, rate: float, now: float
) -> TokenBucketState:
    """Return the bucket as it stands at ``now`` (new object, input untouched)."""
    if state is None:
        return TokenBucketState(tokens=float(limit), last_refill=now)
    elapsed = elapsed_since(now, state.last_refill, "token bucket")
    tokens = min(float(limit), max(0.0, state.tokens) + elapsed * rate)
    # last_refill never moves backwards, so a skewed clock cannot refill twice
    return TokenBucketState(tokens=tokens, last_refill=max(now, state.last_refill))


def consume(
    bucket: TokenBucketState, limit: float, rate: float, cost: int, now: float
) -> Tuple[TokenBucketState, Verdict]:
    """Try to take ``cost`` tokens from an already refilled bucket."""
    if bucket.tokens >= cost:
        tokens = bucket.tokens - cost
        new_state = TokenBucketState(tokens=tokens, last_refill=bucket.last_refill)
        reset_at = now + (limit - tokens) / rate if rate > 0 else now
        return new_state, Verdict(
            allowed=True,
            limit=limit,
            remaining=int(tokens),
            reset_at=reset_at,
        )

    if rate > 0:
        retry_after = (cost - bucket.tokens) / rate
        reset_at = now + (limit - bucket.tokens) / rate
    else:
        # Never refills: nothing to wait for
        retry_after = None
        reset_at = now
    return bucket, Verdict(
        allowed=False,
        limit=limit,
        remaining=int(bucket.tokens),
        reset_at=reset_at,
        retry_after=retry_after,
    )


class TokenBucketStrategy(RateLimitStrategy[TokenBucketState]):
    """Token bucket: refill by elapsed time, then try to consume."""

    algorithm = Algorithm.TOKEN_BUCKET
    state_class = TokenBucketState

    def decide(
        self,
        state: Optional[TokenBucketState],
        policy: Policy,
        cost: int,
        now: float,
        *,
        system_load: Optional[float] = None,
    ) -> Tuple[TokenBucketState, Verdict]:
        limit = policy.limit
        rate = policy.rate_per_second
        bucket = refill(state, limit, rate, now)
        return consume(bucket, limit, rate, cost, now)
