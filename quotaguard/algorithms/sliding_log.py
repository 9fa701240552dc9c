"""Sliding Window Log rate limiting algorithm.

Keeps the timestamp of every admitted unit inside the window. Exact: no
interval of ``window_seconds`` ever holds more than ``limit`` admitted
units. Costs O(limit) memory and time per check.
"""

import bisect
import math
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from quotaguard.algorithms.base import LimiterState, RateLimitStrategy, Verdict
from quotaguard.policy.models import Algorithm, Policy


@dataclass
class SlidingLogState(LimiterState):
    """Sliding log state.

    Attributes:
        timestamps: Admission times in ascending order, pruned on every check
    """

    timestamps: List[float] = field(default_factory=list)


class SlidingLogStrategy(RateLimitStrategy[SlidingLogState]):
    """Sliding window log: prune, count, append."""

    algorithm = Algorithm.SLIDING_LOG
    state_class = SlidingLogState

    def decide(
        self,
        state: Optional[SlidingLogState],
        policy: Policy,
        cost: int,
        now: float,
        *,
        system_load: Optional[float] = None,
    ) -> Tuple[SlidingLogState, Verdict]:
        window = policy.window_seconds
        limit = policy.limit
        cutoff = now - window

        log = sorted(state.timestamps) if state is not None else []
        # Entries at or before the cutoff have left the window (now - window, now]
        log = log[bisect.bisect_right(log, cutoff):]

        if len(log) + cost <= limit:
            # Entries from a clock running ahead stay sorted after insort
            for _ in range(cost):
                bisect.insort(log, now)
            allowed = True
            retry_after = None
        else:
            allowed = False
            # Enough of the oldest entries must expire to make room
            excess = int(math.ceil(len(log) + cost - limit))
            if 0 < excess <= len(log):
                retry_after = max(0.0, log[excess - 1] + window - now)
            else:
                retry_after = None  # cost can never fit

        reset_at = log[-1] + window if log else now
        return SlidingLogState(timestamps=log), Verdict(
            allowed=allowed,
            limit=limit,
            remaining=max(0, int(limit - len(log))),
            reset_at=reset_at,
            retry_after=retry_after,
        )
