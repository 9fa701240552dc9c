"""Utility functions for the rate limiter."""

import math
import time

from quotaguard.core.logging import get_logger

logger = get_logger(__name__)


def wall_clock() -> float:
    """Current wall-clock time in seconds since the epoch.

    Window ids are derived from this value on every node, so nodes must
    share a roughly synchronized clock.
    """
    return time.time()


def elapsed_since(now: float, since: float, what: str = "state") -> float:
    """Seconds elapsed from ``since`` to ``now``, never negative.

    A backwards clock step (or a state written by a node whose clock runs
    ahead) would otherwise produce negative refill or leak. The anomaly is
    logged and the elapsed time clamped to zero.

    Examples:
        >>> elapsed_since(10.0, 7.5)
        2.5
        >>> elapsed_since(10.0, 12.0)
        0.0
    """
    elapsed = now - since
    if elapsed < 0:
        logger.warning(
            f"Clock skew detected for {what}: now={now:.6f} is "
            f"{-elapsed:.6f}s behind last update; clamping elapsed to 0"
        )
        return 0.0
    return elapsed


def ceil_seconds(value: float | None) -> int | None:
    """Round a duration up to whole seconds (for Retry-After style fields)."""
    if value is None:
        return None
    return max(0, int(math.ceil(value - 1e-9)))
