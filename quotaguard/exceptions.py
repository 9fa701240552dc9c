"""Custom exceptions for the rate limiting core."""


class QuotaGuardError(Exception):
    """Base class for quotaguard exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code so an HTTP boundary can map them mechanically.
    """
    status_code: int = 500

    def __init__(self, message: str = "Rate limiter error"):
        self.message = message
        super().__init__(message)


class PolicyNotFoundError(QuotaGuardError):
    """Raised when a policy id (or tier/resource mapping) is unknown.

    This is a configuration error and is never silently defaulted.
    """
    status_code = 500

    def __init__(self, policy_id: str, detail: str | None = None):
        self.policy_id = policy_id
        super().__init__(detail or f"Unknown rate limit policy: {policy_id!r}")


class InvalidCostError(QuotaGuardError):
    """Raised when a check asks for a cost the policy can never satisfy.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400

    def __init__(self, cost, limit: float | None = None):
        self.cost = cost
        self.limit = limit
        if limit is None:
            message = f"Cost must be a positive integer, got {cost!r}"
        else:
            message = f"Cost {cost!r} exceeds policy limit {limit:g}"
        super().__init__(message)


class StoreUnavailableError(QuotaGuardError):
    """Raised when the shared state store cannot complete an update.

    Covers unreachable stores and calls that miss their deadline. The
    decision engine recovers it into a fail-open or fail-closed verdict.
    """
    status_code = 503

    def __init__(self, reason: str = "unavailable", detail: str | None = None):
        self.reason = reason
        super().__init__(detail or f"State store unavailable ({reason})")


class NoNodesAvailableError(StoreUnavailableError):
    """Raised when the routing ring has no nodes to own a key."""

    def __init__(self):
        super().__init__("no_nodes", "Consistent hash ring has no nodes")


class OptimisticConflictExhaustedError(StoreUnavailableError):
    """Raised when the optimistic update loop runs out of attempts.

    Treated exactly like StoreUnavailableError by the engine.
    """

    def __init__(self, key: str, attempts: int):
        self.key = key
        self.attempts = attempts
        super().__init__(
            "conflict_exhausted",
            f"Optimistic update of {key!r} conflicted {attempts} times",
        )
