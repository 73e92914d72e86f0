"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
payments_created_total = Counter(
    "payments_created_total",
    "Total number of payment intents created",
    ["plan"],
)

payments_terminal_total = Counter(
    "payments_terminal_total",
    "Total payments moved to a final status",
    ["status"],  # completed, failed, cancelled
)

callbacks_received_total = Counter(
    "callbacks_received_total",
    "Total aggregator callbacks received",
    ["match"],  # reference, checkout_request_id, phone_amount, none
)

words_credited_total = Counter(
    "words_credited_total",
    "Total words credited to user balances",
)

words_debited_total = Counter(
    "words_debited_total",
    "Total words debited from user balances",
)

balance_rejected_total = Counter(
    "balance_rejected_total",
    "Total debits rejected for insufficient balance",
)

aggregator_requests_total = Counter(
    "aggregator_requests_total",
    "Total payment aggregator requests",
    ["status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
aggregator_request_duration_seconds = Histogram(
    "aggregator_request_duration_seconds",
    "Payment aggregator request duration",
    buckets=[0.1, 0.5, 1, 2, 5, 10, 30],
)


router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
