"""
Metrics Collection with Prometheus.

Exposes webhook, pipeline and verification metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from appstore_notifier.config import get_runtime_settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    RESULT = "result"
    ENVIRONMENT = "environment"
    ERROR_TYPE = "error_type"


class NotifierMetrics:
    """
    Centralized metrics for the notifier.

    - HTTP requests (rate, duration, in progress)
    - Pipeline outcomes by terminal result
    - Verification attempts by environment
    - Lifecycle hints
    - Errors by type and operation
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        runtime = get_runtime_settings()
        self.service_info = Info(
            "notifier_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": runtime.api_version,
                "service_name": runtime.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "notifier_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "notifier_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "notifier_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Pipeline Metrics
        # ====================================================================
        self.pipeline_outcomes_total = Counter(
            "notifier_pipeline_outcomes_total",
            "Terminal pipeline outcomes",
            [MetricLabels.RESULT],
        )

        self.verification_attempts_total = Counter(
            "notifier_verification_attempts_total",
            "Signature verification attempts",
            [MetricLabels.ENVIRONMENT, "success"],
        )

        self.lifecycle_hints_total = Counter(
            "notifier_lifecycle_hints_total",
            "Subscription lifecycle hints inferred",
            ["hint"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "notifier_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_pipeline_outcome(self, result: str) -> None:
        """Record a terminal pipeline result."""
        self.pipeline_outcomes_total.labels(result=result).inc()

    def record_verification_attempt(self, environment: str, success: bool) -> None:
        """Record one verifier attempt."""
        self.verification_attempts_total.labels(environment=environment, success=str(success)).inc()

    def record_lifecycle_hint(self, hint: str | None) -> None:
        """Record an inferred lifecycle hint."""
        self.lifecycle_hints_total.labels(hint=hint or "none").inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = NotifierMetrics()
