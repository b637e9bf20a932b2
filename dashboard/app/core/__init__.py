"""Core utilities for the dashboard application."""

from dashboard.app.core.config import settings
from dashboard.app.core.logging import get_logger, setup_logging
from dashboard.app.core.metrics import MetricsCollector, get_metrics_collector
from dashboard.app.core.redis_client import CounterStore, StoreError, WindowCounts

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
    "MetricsCollector",
    "get_metrics_collector",
    "CounterStore",
    "StoreError",
    "WindowCounts",
]
