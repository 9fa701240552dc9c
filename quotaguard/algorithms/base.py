"""Common contract for rate limiting algorithms.

Every algorithm is a pure function over ``(state, policy, cost, now)``. It
returns a new state and a verdict and never mutates its inputs, so a
decision that is computed but not committed (an optimistic update that lost
a race) leaves nothing behind. Mutable state lives only in a state store.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, ClassVar, Dict, Generic, Optional, Tuple, TypeVar

from quotaguard.core.utils import ceil_seconds
from quotaguard.policy.models import Algorithm, Policy


def _header_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.3f}".rstrip("0").rstrip(".")


@dataclass
class Verdict:
    """Result of a rate limit check.

    Attributes:
        allowed: Whether the request may proceed
        limit: Policy ceiling (capacity plus burst allowance)
        remaining: Whole units still available after this decision
        reset_at: Epoch seconds when the quota is fully restored
        retry_after: Seconds until a denied request could succeed; None when
            allowed, or when the quota never restores (zero refill rate)
        policy_id: Policy that produced the verdict
        degraded: True when the verdict came from the fail-open/closed path
    """

    allowed: bool
    limit: float
    remaining: int
    reset_at: float
    retry_after: Optional[float] = None
    policy_id: Optional[str] = None
    degraded: bool = False

    def to_headers(self) -> Dict[str, str]:
        """Map the verdict onto the conventional rate limit response headers."""
        headers = {
            "X-RateLimit-Limit": _header_number(self.limit),
            "X-RateLimit-Remaining": str(max(0, self.remaining)),
            "X-RateLimit-Reset": str(int(math.ceil(self.reset_at))),
        }
        if not self.allowed and self.retry_after is not None:
            headers["Retry-After"] = str(ceil_seconds(self.retry_after))
        return headers

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LimiterState:
    """Base class for per-client algorithm state.

    Subclasses are plain dataclasses whose fields serialize to JSON as-is.
    """

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LimiterState":
        return cls(**data)


S = TypeVar("S", bound=LimiterState)


class RateLimitStrategy(ABC, Generic[S]):
    """Abstract base class for the rate limiting algorithms.

    Implementations hold no mutable fields. The registry in
    ``quotaguard.algorithms`` maps each ``Algorithm`` member to exactly one
    instance; adding a member there is the only extension point.
    """

    algorithm: ClassVar[Algorithm]
    state_class: ClassVar[type]

    def load_state(self, data: Optional[Dict[str, Any]]) -> Optional[S]:
        """Rebuild typed state from its stored dict form.

        Stored state that no longer matches the state shape (for example a
        slot written by an older release) is discarded rather than trusted.
        """
        if data is None:
            return None
        try:
            return self.state_class.from_dict(data)
        except (KeyError, TypeError, ValueError):
            return None

    @abstractmethod
    def decide(
        self,
        state: Optional[S],
        policy: Policy,
        cost: int,
        now: float,
        *,
        system_load: Optional[float] = None,
    ) -> Tuple[S, Verdict]:
        """Decide whether a request of ``cost`` units is admitted.

        Args:
            state: Current state, or None for a client seen for the first time
            policy: Policy being enforced
            cost: Units the request consumes (already validated, 1..limit)
            now: Current wall-clock time in epoch seconds
            system_load: Externally observed load in [0, 1]; only the
                adaptive algorithm reads it

        Returns:
            Tuple of (new_state, verdict). The input state is not modified.
        """
        ...
