"""Rate limit policy models.

Policies are immutable once loaded. Every policy carries a version; limiter
state is addressed by ``(policy_id, version, client_key)`` so a changed
policy never reinterprets state computed under its predecessor.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Algorithm(str, Enum):
    """Supported rate limiting algorithms."""

    TOKEN_BUCKET = "token_bucket"
    LEAKY_BUCKET = "leaky_bucket"
    FIXED_WINDOW = "fixed_window"
    SLIDING_LOG = "sliding_log"
    SLIDING_COUNTER = "sliding_counter"
    ADAPTIVE = "adaptive"


WINDOWED_ALGORITHMS = frozenset(
    {Algorithm.FIXED_WINDOW, Algorithm.SLIDING_LOG, Algorithm.SLIDING_COUNTER}
)


class FailMode(str, Enum):
    """Verdict to return when the shared state store cannot be used."""

    OPEN = "open"
    CLOSED = "closed"


class Policy(BaseModel):
    """Immutable description of a rate limit.

    Attributes:
        policy_id: Unique policy identifier
        algorithm: Which decision algorithm enforces the policy
        capacity: Requests (or cost units) admitted per bucket/window
        rate_per_second: Refill rate (token bucket) or leak rate (leaky bucket)
        window_seconds: Window length for the window algorithms
        sub_windows: Sub-window count for the sliding counter
        min_rate: Lowest effective refill rate for the adaptive algorithm
        max_rate: Highest effective refill rate for the adaptive algorithm
        burst_allowance: Extra headroom added to capacity
        tier: Tier the policy belongs to (free, basic, premium, ...)
        key_scope: What the client key identifies (client, ip, user, ...)
        version: Bumped whenever the policy parameters change
        bypass: Skip enforcement entirely (VIP / internal traffic)
        fail_mode: Store-failure behaviour; None means the global setting
        load_smoothing_seconds: EMA time constant for the adaptive load signal
    """

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    policy_id: str = Field(min_length=1)
    algorithm: Algorithm = Algorithm.TOKEN_BUCKET
    capacity: float = Field(default=1.0, gt=0)
    rate_per_second: float = Field(default=0.0, ge=0)
    window_seconds: Optional[float] = Field(default=None, gt=0)
    sub_windows: int = Field(default=10, ge=1)
    min_rate: Optional[float] = Field(default=None, ge=0)
    max_rate: Optional[float] = Field(default=None, ge=0)
    burst_allowance: float = Field(default=0.0, ge=0)
    tier: str = "default"
    key_scope: str = "client"
    version: int = Field(default=1, ge=1)
    bypass: bool = False
    fail_mode: Optional[FailMode] = None
    load_smoothing_seconds: float = Field(default=10.0, gt=0)

    @field_validator("policy_id", "tier")
    @classmethod
    def strip_identifiers(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("identifier must not be blank")
        return v

    @model_validator(mode="after")
    def check_algorithm_parameters(self) -> "Policy":
        """Require the parameters the chosen algorithm depends on."""
        if self.bypass:
            return self
        if self.algorithm in WINDOWED_ALGORITHMS and self.window_seconds is None:
            raise ValueError(f"{self.algorithm.value} requires window_seconds")
        if self.algorithm == Algorithm.ADAPTIVE:
            if self.min_rate is None or self.max_rate is None:
                raise ValueError("adaptive requires min_rate and max_rate")
            if self.min_rate > self.max_rate:
                raise ValueError("adaptive requires min_rate <= max_rate")
        return self

    @property
    def limit(self) -> float:
        """Bucket ceiling: capacity plus burst allowance."""
        return self.capacity + self.burst_allowance

    @property
    def horizon_seconds(self) -> float:
        """Time after which an idle state carries no information.

        The window length for window algorithms, otherwise the time a bucket
        needs to refill (or drain) completely. Falls back to one hour for
        buckets that never refill.
        """
        if self.window_seconds is not None and self.algorithm in WINDOWED_ALGORITHMS:
            return self.window_seconds
        rate = self.rate_per_second
        if self.algorithm == Algorithm.ADAPTIVE:
            rate = self.min_rate or 0.0
        if rate > 0:
            return self.limit / rate
        return 3600.0

    def state_ttl(self, multiplier: float) -> float:
        """Idle expiry for this policy's state, in seconds."""
        return max(1.0, self.horizon_seconds * multiplier)

    def state_key(self, client_key: str, prefix: str = "quotaguard") -> str:
        """Storage key for a client's state under this policy version.

        The client key is wrapped in a hash tag so every key of one client
        lands on the same Redis Cluster slot and the same ring shard.
        """
        return f"{prefix}:{self.policy_id}:v{self.version}:{{{client_key}}}"


class PolicyDocument(BaseModel):
    """Policy configuration as loaded from an external source.

    Example (JSON)::

        {
          "policies": [
            {"policy_id": "free-api", "algorithm": "token_bucket",
             "capacity": 10, "rate_per_second": 1, "tier": "free"},
            {"policy_id": "vip", "bypass": true, "tier": "vip"}
          ],
          "tiers": {"free": {"*": "free-api"}, "vip": {"*": "vip"}},
          "clients": {"acme": "vip"},
          "overrides": {"bob": {"/search": "free-api"}},
          "bypass_clients": ["healthcheck"],
          "default_tier": "free"
        }
    """

    policies: list[Policy] = Field(default_factory=list)
    tiers: dict[str, dict[str, str]] = Field(default_factory=dict)
    clients: dict[str, str] = Field(default_factory=dict)
    overrides: dict[str, dict[str, str]] = Field(default_factory=dict)
    bypass_clients: list[str] = Field(default_factory=list)
    default_tier: Optional[str] = None

    @model_validator(mode="after")
    def check_references(self) -> "PolicyDocument":
        """Reject duplicate policies and mappings to unknown policies or tiers."""
        ids = [p.policy_id for p in self.policies]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"duplicate policy ids: {', '.join(duplicates)}")
        known = set(ids)
        for owner, mapping in list(self.tiers.items()) + list(self.overrides.items()):
            for resource, policy_id in mapping.items():
                if policy_id not in known:
                    raise ValueError(
                        f"{owner!r}/{resource!r} refers to unknown policy {policy_id!r}"
                    )
        for client_id, tier in self.clients.items():
            if tier not in self.tiers:
                raise ValueError(f"client {client_id!r} assigned to unknown tier {tier!r}")
        if self.default_tier is not None and self.default_tier not in self.tiers:
            raise ValueError(f"unknown default tier {self.default_tier!r}")
        return self
