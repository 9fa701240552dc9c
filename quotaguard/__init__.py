"""Distributed rate limiting core."""

from quotaguard.algorithms.base import Verdict
from quotaguard.policy.models import Algorithm, FailMode, Policy, PolicyDocument
from quotaguard.services.engine import DecisionEngine, create_engine
from quotaguard.services.policy_manager import TierPolicyManager

__version__ = "0.1.0"

__all__ = [
    "Algorithm",
    "DecisionEngine",
    "FailMode",
    "Policy",
    "PolicyDocument",
    "TierPolicyManager",
    "Verdict",
    "create_engine",
]
