"""Policy model: algorithms, fail modes and policy documents."""

from quotaguard.policy.models import (
    WINDOWED_ALGORITHMS,
    Algorithm,
    FailMode,
    Policy,
    PolicyDocument,
)

__all__ = [
    "Algorithm",
    "FailMode",
    "Policy",
    "PolicyDocument",
    "WINDOWED_ALGORITHMS",
]
