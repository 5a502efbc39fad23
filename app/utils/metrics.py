"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
chain_rpc_requests_total = Counter(
    "chain_rpc_requests_total",
    "Total payment-network JSON-RPC requests",
    ["method", "status"],  # success, error, breaker_open
)

payment_verifications_total = Counter(
    "payment_verifications_total",
    "Total payment verification outcomes",
    ["token_kind", "status"],
)

purchases_total = Counter(
    "purchases_total",
    "Total purchase requests by terminal state",
    ["item_kind", "status"],
)

entitlement_conflicts_total = Counter(
    "entitlement_conflicts_total",
    "Grants rejected by the transaction-hash unique index (concurrent duplicates)",
)

subscription_cancellations_total = Counter(
    "subscription_cancellations_total",
    "Total subscription cancellations",
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
chain_rpc_duration_seconds = Histogram(
    "chain_rpc_duration_seconds",
    "Payment-network JSON-RPC request duration",
    ["method"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30],
)

purchase_duration_seconds = Histogram(
    "purchase_duration_seconds",
    "End-to-end purchase verification duration",
    ["item_kind"],
    buckets=[0.1, 0.5, 1, 2, 5, 10, 30],
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
