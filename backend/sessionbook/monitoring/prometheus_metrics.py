"""
Prometheus metrics for the session booking engine.

Service timings come from the @measure_operation decorator; the domain
helpers below count booking outcomes, refunds, sweep results and lock
contention.
"""

from threading import Lock
from time import monotonic
from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "sessionbook_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "sessionbook_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "sessionbook_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

bookings_total = Counter(
    "sessionbook_bookings_total",
    "Booking creation attempts by outcome",
    ["kind", "outcome"],
    registry=REGISTRY,
)

booking_transitions_total = Counter(
    "sessionbook_booking_transitions_total",
    "Booking status transitions",
    ["to_status", "source"],
    registry=REGISTRY,
)

credits_refunded_total = Counter(
    "sessionbook_credits_refunded_total",
    "Credits returned to students on cancellation",
    ["initiator"],
    registry=REGISTRY,
)

sweep_items_total = Counter(
    "sessionbook_sweep_items_total",
    "Items processed by reconciliation sweeps",
    ["sweep", "result"],
    registry=REGISTRY,
)

booking_lock_total = Counter(
    "sessionbook_booking_lock_total",
    "Booking critical section lock events",
    ["action", "result"],
    registry=REGISTRY,
)

external_call_seconds = Histogram(
    "sessionbook_external_call_seconds",
    "Duration of calls to external collaborators",
    ["service", "outcome"],
    registry=REGISTRY,
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    _cache_lock: Lock = Lock()
    _cache_payload: Optional[bytes] = None
    _cache_ts: Optional[float] = None
    _cache_ttl_seconds: float = 1.0

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'BookingService')
            operation: Operation/method name (e.g., 'create_booking')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()

        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def get_metrics() -> bytes:
        """
        Generate Prometheus metrics in exposition format.

        Returns:
            Metrics data in Prometheus text format
        """
        now = monotonic()
        payload = PrometheusMetrics._cache_payload
        ts = PrometheusMetrics._cache_ts

        if payload is not None and ts is not None and (now - ts) <= PrometheusMetrics._cache_ttl_seconds:
            return payload

        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_payload = cast(bytes, generate_latest(REGISTRY))
            PrometheusMetrics._cache_ts = monotonic()
            payload = PrometheusMetrics._cache_payload

        return cast(bytes, payload)

    @staticmethod
    def get_content_type() -> str:
        """Get the content type for Prometheus metrics."""
        return cast(str, CONTENT_TYPE_LATEST)

    @staticmethod
    def _invalidate_cache() -> None:
        """Invalidate cached metrics so next scrape refreshes."""

        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_ts = None
            PrometheusMetrics._cache_payload = None

    # Domain helpers
    @staticmethod
    def record_booking(kind: str, outcome: str) -> None:
        """Count a booking creation attempt (outcome is 'created' or an error code)."""
        bookings_total.labels(kind=kind, outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_transition(to_status: str, source: str = "api") -> None:
        booking_transitions_total.labels(to_status=to_status, source=source).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def inc_credits_refunded(amount: int, initiator: str) -> None:
        if amount > 0:
            credits_refunded_total.labels(initiator=initiator).inc(amount)
            PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_sweep_item(sweep: str, result: str, count: int = 1) -> None:
        if count > 0:
            sweep_items_total.labels(sweep=sweep, result=result).inc(count)
            PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_booking_lock(action: str, result: str) -> None:
        booking_lock_total.labels(action=action, result=result).inc()

    @staticmethod
    def observe_external_call(service: str, outcome: str, duration: float) -> None:
        external_call_seconds.labels(service=service, outcome=outcome).observe(max(duration, 0.0))


# Singleton instance
prometheus_metrics = PrometheusMetrics()
