"""
Metrics Collection with Prometheus.

Exposes ledger and redemption metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from gem_ledger.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    TRANSACTION_TYPE = "transaction_type"
    ERROR_TYPE = "error_type"
    OUTCOME = "outcome"


class GemMetrics:
    """
    Centralized metrics for the Gem Ledger API.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Ledger deltas (rate by type and outcome, gem amounts)
    - Conversions, purchases and partner offer activations
    - Justification issuance (issued, pending, regenerated)
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "gem_ledger_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "gem_ledger_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "gem_ledger_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "gem_ledger_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Ledger Metrics
        # ====================================================================
        self.ledger_deltas_total = Counter(
            "gem_ledger_deltas_total",
            "Total ledger delta applications",
            [MetricLabels.TRANSACTION_TYPE, MetricLabels.OUTCOME],
        )

        self.ledger_delta_gems = Histogram(
            "gem_ledger_delta_gems",
            "Absolute gem amount per completed ledger delta",
            [MetricLabels.TRANSACTION_TYPE],
            buckets=(0, 1, 2, 5, 10, 25, 50, 100, 250, 500, 1000),
        )

        self.accounts_created_total = Counter(
            "gem_ledger_accounts_created_total",
            "Total gem accounts created",
        )

        # ====================================================================
        # Service Operation Metrics
        # ====================================================================
        self.conversions_total = Counter(
            "gem_ledger_conversions_total",
            "Total point to gem conversions",
            [MetricLabels.OUTCOME],
        )

        self.purchases_total = Counter(
            "gem_ledger_purchases_total",
            "Total customization purchases",
            ["category", MetricLabels.OUTCOME],
        )

        self.offer_activations_total = Counter(
            "gem_ledger_offer_activations_total",
            "Total partner offer activations (replayed counts idempotent repeats)",
            ["offer_type", MetricLabels.OUTCOME],
        )

        self.justifications_total = Counter(
            "gem_ledger_justifications_total",
            "Justification artifact issuance attempts",
            ["justification_type", MetricLabels.OUTCOME],
        )

        self.justification_duration_seconds = Histogram(
            "gem_ledger_justification_duration_seconds",
            "Proof issuer rendering duration in seconds",
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "gem_ledger_errors_total",
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

    def record_ledger_delta(self, transaction_type: str, outcome: str, gems_delta: int) -> None:
        """Record a ledger delta application."""
        self.ledger_deltas_total.labels(
            transaction_type=transaction_type, outcome=outcome
        ).inc()
        if outcome == "completed":
            self.ledger_delta_gems.labels(transaction_type=transaction_type).observe(
                abs(gems_delta)
            )

    def record_justification(self, justification_type: str, outcome: str, duration: float) -> None:
        """Record a proof issuer call."""
        self.justifications_total.labels(
            justification_type=justification_type, outcome=outcome
        ).inc()
        self.justification_duration_seconds.observe(duration)

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = GemMetrics()
