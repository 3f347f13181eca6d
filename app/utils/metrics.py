"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
payments_initialized_total = Counter(
    "payments_initialized_total",
    "Total number of payments initialized and stored as pending",
    ["payer_kind"],
)

payment_settlements_total = Counter(
    "payment_settlements_total",
    "Total settlement applications",
    ["source", "outcome"],  # source: webhook, verify; outcome: applied, stale, not_found, duplicate
)

webhooks_rejected_total = Counter(
    "webhooks_rejected_total",
    "Total rejected webhook deliveries",
    ["reason"],
)

gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total payment gateway API requests",
    ["operation", "status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Payment gateway API request duration",
    ["operation"],
    buckets=[0.1, 0.5, 1, 2, 5, 10, 15],
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
