"""Core utilities for the rate limiter."""

from quotaguard.core.config import Settings, settings
from quotaguard.core.logging import get_log_context, get_logger, setup_logging
from quotaguard.core.metrics import (
    MetricsCollector,
    get_metrics_collector,
    reset_metrics_collector,
)

__all__ = [
    "Settings",
    "settings",
    "get_logger",
    "get_log_context",
    "setup_logging",
    "MetricsCollector",
    "get_metrics_collector",
    "reset_metrics_collector",
]
