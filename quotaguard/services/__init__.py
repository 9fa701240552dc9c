"""Limiter services: decision engine, policy manager and load monitor."""

from quotaguard.services.engine import DecisionEngine, build_store, create_engine
from quotaguard.services.load_monitor import LoadMonitor, get_load_monitor, reset_load_monitor
from quotaguard.services.policy_manager import (
    PolicySnapshot,
    TierPolicyManager,
    get_policy_manager,
    reset_policy_manager,
)

__all__ = [
    "DecisionEngine",
    "build_store",
    "create_engine",
    "LoadMonitor",
    "get_load_monitor",
    "reset_load_monitor",
    "PolicySnapshot",
    "TierPolicyManager",
    "get_policy_manager",
    "reset_policy_manager",
]
