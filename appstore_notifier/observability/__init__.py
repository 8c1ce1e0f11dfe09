"""
Observability module - Logging, Metrics, and Tracing.
"""

from appstore_notifier.observability.logging import get_logger, log_context, setup_logging
from appstore_notifier.observability.metrics import metrics
from appstore_notifier.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
