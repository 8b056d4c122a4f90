"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Saga metrics
saga_outcomes = Counter(
    'booking_saga_outcomes_total',
    'Booking sagas by terminal status',
    ['status']  # CONFIRMED, CANCELLED
)

saga_latency = Histogram(
    'booking_saga_latency_seconds',
    'Time from PENDING to a terminal booking status',
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

compensation_failures = Counter(
    'booking_compensation_failures_total',
    'Compensating or follow-up inventory calls that failed after retries',
    ['operation']  # release, finalize
)

# Gateway metrics
gateway_calls = Counter(
    'inventory_gateway_calls_total',
    'Inventory gateway calls',
    ['operation', 'result']  # granted, declined, completed, failed
)

gateway_retries = Counter(
    'inventory_gateway_retries_total',
    'Inventory gateway retry attempts',
    ['operation']
)

# Ledger metrics
hold_operations = Counter(
    'room_hold_operations_total',
    'Room ledger operations',
    ['operation', 'result']  # acquire/release/finalize, applied/replayed/rejected/noop
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_saga_outcome(status: str, duration_seconds: float):
    saga_outcomes.labels(status=status).inc()
    saga_latency.observe(duration_seconds)


def record_compensation_failure(operation: str):
    compensation_failures.labels(operation=operation).inc()


def record_gateway_call(operation: str, result: str):
    gateway_calls.labels(operation=operation, result=result).inc()


def record_gateway_retry(operation: str):
    gateway_retries.labels(operation=operation).inc()


def record_hold_operation(operation: str, result: str):
    """Record ledger decision. Result: applied, replayed, rejected, noop"""
    hold_operations.labels(operation=operation, result=result).inc()
