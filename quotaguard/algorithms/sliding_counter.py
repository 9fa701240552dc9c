"""Sliding Window Counter rate limiting algorithm.

Approximates the sliding log with O(N) memory: the window is split into
``sub_windows`` buckets and the count over ``[now - window, now]`` is the
sum of the N newest buckets plus the oldest, partially overlapping bucket
weighted by how much of it still overlaps the window.

Example:
    window_seconds=10, sub_windows=10 (1s buckets), now=25.3
    - current bucket: 25, oldest overlapping bucket: 15
    - bucket 15 covers [15, 16); the window starts at 15.3, so it counts 70%
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from quotaguard.algorithms.base import LimiterState, RateLimitStrategy, Verdict
from quotaguard.policy.models import Algorithm, Policy


@dataclass
class SlidingCounterState(LimiterState):
    """Sliding counter state.

    Attributes:
        counts: ``[sub_window_id, count]`` pairs for buckets still inside the window
    """

    counts: List[List[int]] = field(default_factory=list)

    def as_mapping(self) -> Dict[int, int]:
        return {int(sub_id): int(count) for sub_id, count in self.counts}


class SlidingCounterStrategy(RateLimitStrategy[SlidingCounterState]):
    """Weighted sliding window counter."""

    algorithm = Algorithm.SLIDING_COUNTER
    state_class = SlidingCounterState

    def decide(
        self,
        state: Optional[SlidingCounterState],
        policy: Policy,
        cost: int,
        now: float,
        *,
        system_load: Optional[float] = None,
    ) -> Tuple[SlidingCounterState, Verdict]:
        n = policy.sub_windows
        sub = policy.window_seconds / n
        limit = policy.limit

        position = now / sub
        current = int(math.floor(position))
        fraction = position - current
        oldest = current - n

        counts = state.as_mapping() if state is not None else {}
        # Buckets newer than the current one come from a node whose clock runs
        # ahead; they are kept and counted in full
        counts = {k: v for k, v in counts.items() if k >= oldest and v > 0}

        oldest_weight = 1.0 - fraction
        full = sum(v for k, v in counts.items() if k != oldest)
        partial = counts.get(oldest, 0)
        weighted = full + partial * oldest_weight

        if weighted + cost - 1 < limit:
            counts[current] = counts.get(current, 0) + cost
            weighted += cost
            allowed = True
            retry_after = None
        else:
            allowed = False
            retry_after = self._retry_after(
                full, partial, fraction, limit, cost, sub, current, now
            )

        newest = max(counts) if counts else None
        reset_at = (newest + n + 1) * sub if newest is not None else now
        remaining = max(0, int(math.ceil(limit - weighted - 1e-9)))

        new_state = SlidingCounterState(
            counts=[[k, counts[k]] for k in sorted(counts)]
        )
        return new_state, Verdict(
            allowed=allowed,
            limit=limit,
            remaining=remaining,
            reset_at=reset_at,
            retry_after=retry_after,
        )

    @staticmethod
    def _retry_after(
        full: int,
        partial: int,
        fraction: float,
        limit: float,
        cost: int,
        sub: float,
        current: int,
        now: float,
    ) -> float:
        """Seconds until the request would fit.

        Exact when the shrinking weight of the oldest bucket frees enough room
        before the current bucket ends; otherwise the next bucket boundary,
        which is a lower bound.
        """
        # Admitted once partial * (1 - f) < headroom
        headroom = limit - cost + 1 - full
        if partial > 0 and headroom > 0:
            threshold = 1.0 - headroom / partial
            return max(0.0, (threshold - fraction) * sub)
        return max(0.0, (current + 1) * sub - now)
