"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from fastapi import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

# Reservation metrics
reservation_attempts = Counter(
    'reservation_attempts_total',
    'Total reservation creation attempts',
    ['mode', 'result']  # seat/inventory; created, capacity_exceeded, validation, not_found, conflict
)

reservation_latency = Histogram(
    'reservation_latency_seconds',
    'Reservation creation latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

state_transitions = Counter(
    'reservation_state_transitions_total',
    'Reservation state transitions',
    ['transition', 'result']  # confirm/cancel/expire/admin_cancel; applied, noop, rejected
)

# Store metrics
cas_retries = Counter(
    'capacity_cas_retries_total',
    'Compare-and-swap retries due to version conflicts',
    ['operation']
)

# Sweep metrics
sweep_runs = Counter(
    'sweep_runs_total',
    'Background sweep passes',
    ['sweep', 'result']  # hold_expiry/deposit_refund; ok, error
)

sweep_items = Counter(
    'sweep_items_total',
    'Items processed by background sweeps',
    ['sweep', 'result']
)

# Payment metrics
payment_events = Counter(
    'payment_events_total',
    'Payment lifecycle events consumed',
    ['outcome']
)

deposit_refunds = Counter(
    'deposit_refunds_total',
    'Deposit refund attempts',
    ['result']  # refunded, failed, skipped, unreconciled
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_reservation_attempt(mode: str, result: str):
    reservation_attempts.labels(mode=mode, result=result).inc()


def record_transition(transition: str, result: str):
    """Record a state transition attempt. Result: applied, noop, rejected"""
    state_transitions.labels(transition=transition, result=result).inc()


def record_cas_retry(operation: str):
    cas_retries.labels(operation=operation).inc()


def record_sweep(sweep: str, ok: bool):
    sweep_runs.labels(sweep=sweep, result="ok" if ok else "error").inc()


def record_sweep_item(sweep: str, result: str):
    sweep_items.labels(sweep=sweep, result=result).inc()


def record_payment_event(outcome: str):
    payment_events.labels(outcome=outcome).inc()


def record_deposit_refund(result: str):
    deposit_refunds.labels(result=result).inc()


def record_cache_operation(operation: str, hit: bool):
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
