"""Holder for the externally observed system load.

The limiter does not measure load itself. A host application reports it
(CPU, queue depth, upstream latency, ...) normalised to [0, 1], either by
pushing samples with ``observe`` or by installing a provider callable that
is polled on each adaptive check.
"""

import math
from typing import Callable, Optional

from quotaguard.core.logging import get_logger

logger = get_logger(__name__)

LoadProvider = Callable[[], Optional[float]]


class LoadMonitor:
    """Latest system load sample, clamped to [0, 1]."""

    def __init__(self, provider: Optional[LoadProvider] = None):
        self._provider = provider
        self._sample: Optional[float] = None

    @staticmethod
    def _normalize(value: Optional[float]) -> Optional[float]:
        if value is None:
            return None
        value = float(value)
        if math.isnan(value):
            return None
        return min(1.0, max(0.0, value))

    def observe(self, sample: float) -> float:
        """Record a new load sample. Returns the clamped value stored."""
        normalized = self._normalize(sample)
        if normalized is None:
            raise ValueError(f"Invalid load sample: {sample!r}")
        if normalized != sample:
            logger.debug(f"Load sample {sample!r} clamped to {normalized}")
        self._sample = normalized
        return normalized

    def set_provider(self, provider: Optional[LoadProvider]) -> None:
        self._provider = provider

    def current(self) -> Optional[float]:
        """Current load, or None when nothing has been reported yet.

        A provider takes precedence over pushed samples. A failing provider
        falls back to the last pushed sample.
        """
        if self._provider is not None:
            try:
                return self._normalize(self._provider())
            except Exception as e:
                logger.warning(f"Load provider failed: {e}. Using last observed sample.")
        return self._sample

    def reset(self) -> None:
        self._sample = None


# Global load monitor instance
_load_monitor: Optional[LoadMonitor] = None


def get_load_monitor() -> LoadMonitor:
    """Get or create the global load monitor instance."""
    global _load_monitor
    if _load_monitor is None:
        _load_monitor = LoadMonitor()
    return _load_monitor


def reset_load_monitor() -> None:
    """Reset the global load monitor (for testing)."""
    global _load_monitor
    _load_monitor = None
