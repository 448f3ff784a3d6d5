"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
webhook_events_total = Counter(
    "webhook_events_total",
    "Stripe webhook events received",
    ["event_type", "outcome"],  # handled, ignored, failed, rejected
)

payment_reconciliations_total = Counter(
    "payment_reconciliations_total",
    "Checkout reconciliation attempts",
    ["source", "outcome"],  # source: webhook|client; outcome: processed|already_processed|failed
)

credits_granted_total = Counter(
    "credits_granted_total",
    "Credits added by one-time purchases",
)

generations_total = Counter(
    "generations_total",
    "Logo generation requests",
    ["outcome"],  # succeeded, insufficient_credits, failed, timed_out
)

prediction_polls_total = Counter(
    "prediction_polls_total",
    "Prediction status polls by observed status",
    ["outcome"],
)

stripe_requests_total = Counter(
    "stripe_requests_total",
    "Total Stripe API requests",
    ["method", "status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
prediction_duration_seconds = Histogram(
    "prediction_duration_seconds",
    "Time from first poll to a succeeded prediction",
    buckets=[5, 10, 20, 30, 60, 90, 120],
)

stripe_request_duration_seconds = Histogram(
    "stripe_request_duration_seconds",
    "Stripe API request duration",
    ["method"],
    buckets=[0.1, 0.25, 0.5, 1, 2, 5],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "Inbound HTTP request duration",
    ["method", "status_code"],
    buckets=[0.05, 0.1, 0.5, 1, 5, 30, 120],
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
