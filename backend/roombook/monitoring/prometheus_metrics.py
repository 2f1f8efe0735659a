"""
Prometheus metrics for service operations and scheduled sweeps.

Fed by ``@BaseService.measure_operation`` and the Celery sweep tasks.
"""

from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Custom registry to avoid clashes with the default process collectors
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "roombook_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "roombook_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "roombook_errors_total",
    "Total number of failed service operations",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

sweep_items_total = Counter(
    "roombook_sweep_items_total",
    "Bookings processed by scheduled sweeps",
    ["sweep", "outcome"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Thin facade used by services and tasks."""

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def record_sweep_item(sweep: str, outcome: str) -> None:
        sweep_items_total.labels(sweep=sweep, outcome=outcome).inc()

    @staticmethod
    def get_metrics() -> bytes:
        return generate_latest(REGISTRY)

    @staticmethod
    def get_content_type() -> str:
        return CONTENT_TYPE_LATEST


prometheus_metrics = PrometheusMetrics()
