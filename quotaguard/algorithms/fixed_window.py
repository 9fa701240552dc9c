"""Fixed Window rate limiting algorithm.

Counts requests in the window ``floor(now / window_seconds)``; the count
resets when the window id changes. The window id is derived from the clock
alone, so every node agrees on it without a stored window pointer.

Known trade-off: a client can spend a full window's limit just before a
boundary and another full limit just after it, so up to ``2 x limit``
requests pass within a very short interval. Use the sliding log or sliding
counter algorithms when that burst is unacceptable.
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple

from quotaguard.algorithms.base import LimiterState, RateLimitStrategy, Verdict
from quotaguard.policy.models import Algorithm, Policy


@dataclass
class FixedWindowState(LimiterState):
    """Fixed window state.

    Attributes:
        window_id: floor(now / window_seconds) of the counted window
        count: Units admitted in that window
    """

    window_id: int
    count: int


class FixedWindowStrategy(RateLimitStrategy[FixedWindowState]):
    """Fixed window counter."""

    algorithm = Algorithm.FIXED_WINDOW
    state_class = FixedWindowState

    def decide(
        self,
        state: Optional[FixedWindowState],
        policy: Policy,
        cost: int,
        now: float,
        *,
        system_load: Optional[float] = None,
    ) -> Tuple[FixedWindowState, Verdict]:
        window = policy.window_seconds
        limit = policy.limit
        window_id = int(math.floor(now / window))

        count = 0
        if state is not None:
            if state.window_id == window_id:
                count = state.count
            elif state.window_id > window_id:
                # State written under a clock that runs ahead: keep counting
                # in the newer window instead of reopening an old one
                window_id, count = state.window_id, state.count

        reset_at = (window_id + 1) * window
        if count + cost <= limit:
            count += cost
            allowed = True
            retry_after = None
        else:
            allowed = False
            retry_after = max(0.0, reset_at - now)

        return FixedWindowState(window_id=window_id, count=count), Verdict(
            allowed=allowed,
            limit=limit,
            remaining=max(0, int(limit - count)),
            reset_at=reset_at,
            retry_after=retry_after,
        )
