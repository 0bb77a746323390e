"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.

Webhook failures never reach the HTTP response code, so these counters
are the place where reconciliation problems become visible.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Reservation metrics
reservation_attempts = Counter(
    'raffle_reservation_attempts_total',
    'Total reservation attempts',
    ['result']  # success, conflict, invalid
)

reservation_retries = Counter(
    'raffle_reservation_retries_total',
    'Reservation retries after a vanished conflicting hold'
)

checkout_attempts = Counter(
    'raffle_checkout_attempts_total',
    'Payment intent creation attempts',
    ['result']  # success, not_held, gateway_unavailable
)

# Gateway metrics
gateway_requests = Counter(
    'raffle_gateway_requests_total',
    'Payment gateway requests',
    ['operation', 'result']  # create_intent/get_payment/search, ok/error/timeout
)

gateway_latency = Histogram(
    'raffle_gateway_latency_seconds',
    'Payment gateway request latency',
    ['operation'],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0]
)

# Webhook metrics
webhook_notifications = Counter(
    'raffle_webhook_notifications_total',
    'Webhook notifications by reconciliation outcome',
    ['outcome']
)

claim_contention = Counter(
    'raffle_payment_claim_contention_total',
    'Webhook deliveries dropped because the payment was already claimed'
)

# Sweeper metrics
sweeper_released = Counter(
    'raffle_sweeper_released_orders_total',
    'Orders released by the expiry sweeper'
)

sweep_duration = Histogram(
    'raffle_sweep_duration_seconds',
    'Expiry sweep pass duration',
    buckets=[0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0]
)

# HTTP metrics
http_request_duration = Histogram(
    'raffle_http_request_duration_seconds',
    'HTTP request duration by route template',
    ['method', 'route', 'status_code'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)

redis_connection_errors = Counter(
    'raffle_redis_connection_errors_total',
    'Redis connection errors'
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_reservation(result: str):
    """Record reservation attempt. Result: success, conflict, invalid"""
    reservation_attempts.labels(result=result).inc()


def record_checkout(result: str):
    checkout_attempts.labels(result=result).inc()


def record_gateway_request(operation: str, result: str):
    gateway_requests.labels(operation=operation, result=result).inc()


def record_webhook_outcome(outcome: str):
    webhook_notifications.labels(outcome=outcome).inc()


def record_http_request(method: str, route: str, status_code: int, seconds: float):
    http_request_duration.labels(
        method=method, route=route, status_code=str(status_code)
    ).observe(seconds)
