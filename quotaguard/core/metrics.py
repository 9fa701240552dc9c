"""In-process counters for limiter decisions.

Exporting these (Prometheus, StatsD, ...) is left to the host application;
the collector only keeps the numbers and a summary view of them.
"""

import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class PolicyMetrics:
    """Decision counts for a single policy."""

    checks: int = 0
    allowed: int = 0
    denied: int = 0


@dataclass
class MetricsCollector:
    """Collects limiter decision metrics.

    Tracks:
    - Checks, allows and denials per policy
    - Bypassed checks
    - Degraded-mode verdicts (store unavailable) by reason
    - Optimistic update conflicts that were retried
    """

    _policies: Dict[str, PolicyMetrics] = field(
        default_factory=lambda: defaultdict(PolicyMetrics)
    )
    _bypassed: int = 0
    _degraded: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    _conflicts: int = 0

    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    _start_time: float = field(default_factory=time.time)

    async def record_decision(self, policy_id: str, allowed: bool) -> None:
        """Record a verdict produced by a strategy."""
        async with self._lock:
            metrics = self._policies[policy_id]
            metrics.checks += 1
            if allowed:
                metrics.allowed += 1
            else:
                metrics.denied += 1

    async def record_bypass(self) -> None:
        async with self._lock:
            self._bypassed += 1

    async def record_degraded(self, reason: str) -> None:
        """Record a verdict produced by the fail-open/fail-closed path.

        Args:
            reason: Why the store could not be used (timeout, conflict_exhausted, ...)
        """
        async with self._lock:
            self._degraded[reason] += 1

    async def record_conflict(self) -> None:
        async with self._lock:
            self._conflicts += 1

    @property
    def degraded_total(self) -> int:
        return sum(self._degraded.values())

    async def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics.

        Returns:
            Dictionary with metrics summary
        """
        async with self._lock:
            total_checks = sum(m.checks for m in self._policies.values())
            total_denied = sum(m.denied for m in self._policies.values())
            return {
                "uptime_seconds": round(time.time() - self._start_time, 2),
                "total_checks": total_checks,
                "total_denied": total_denied,
                "deny_rate": round(total_denied / total_checks, 4)
                if total_checks > 0
                else 0,
                "bypassed": self._bypassed,
                "degraded": dict(self._degraded),
                "conflicts_retried": self._conflicts,
                "policies": {
                    policy_id: {
                        "checks": m.checks,
                        "allowed": m.allowed,
                        "denied": m.denied,
                    }
                    for policy_id, m in self._policies.items()
                },
            }


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector instance."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics_collector() -> None:
    """Reset the global metrics collector (useful for testing)."""
    global _metrics_collector
    _metrics_collector = None
