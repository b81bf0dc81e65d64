"""
Prometheus metrics for the top-up engine.

Tracks:
- Top-up requests by method and client-visible status
- Idempotent replays
- JazzCash API calls, latency and signature failures
- Polling loops and their outcomes
- Rate limiter occupancy
"""
from prometheus_client import Counter, Gauge, Histogram

# Top-up metrics
topup_requests_total = Counter(
    "topup_requests_total",
    "Total number of top-up requests",
    ["method", "status"],
)

topup_processing_duration_seconds = Histogram(
    "topup_processing_duration_seconds",
    "Top-up initiation duration in seconds",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 45.0),
)

idempotent_replays_total = Counter(
    "idempotent_replays_total",
    "Requests answered from an existing transaction",
    ["status"],
)

# Gateway metrics
gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total JazzCash API requests",
    ["operation", "outcome"],  # outcome: verified, error
)

gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "JazzCash API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 45.0),
)

gateway_signature_failures_total = Counter(
    "gateway_signature_failures_total",
    "Gateway payloads rejected because pp_SecureHash did not verify",
    ["source"],  # response, card_callback
)

# Polling metrics
polling_loops_active = Gauge(
    "polling_loops_active",
    "Number of reconciliation loops currently running",
)

polling_outcomes_total = Counter(
    "polling_outcomes_total",
    "Reconciliation loop outcomes",
    ["outcome"],  # SUCCESS, FAILED, deadline, cancelled, store_error
)

rate_limiter_slots_in_use = Gauge(
    "rate_limiter_slots_in_use",
    "Gateway inquiry slots currently held",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_topup_request(method: str, status: str, duration_seconds: float) -> None:
        """Record a top-up request."""
        topup_requests_total.labels(method=method, status=status).inc()
        topup_processing_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_idempotent_replay(status: str) -> None:
        """Record a request that resolved to an existing transaction."""
        idempotent_replays_total.labels(status=status).inc()

    @staticmethod
    def record_gateway_call(operation: str, outcome: str, duration_seconds: float) -> None:
        """Record JazzCash API call."""
        gateway_requests_total.labels(operation=operation, outcome=outcome).inc()
        gateway_request_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_signature_failure(source: str) -> None:
        """Record a rejected gateway payload."""
        gateway_signature_failures_total.labels(source=source).inc()

    @staticmethod
    def set_polling_loops_active(count: int) -> None:
        """Set number of running polling loops."""
        polling_loops_active.set(count)

    @staticmethod
    def record_polling_outcome(outcome: str) -> None:
        """Record how a polling loop ended."""
        polling_outcomes_total.labels(outcome=outcome).inc()

    @staticmethod
    def set_rate_limiter_in_use(count: int) -> None:
        """Set number of rate limiter slots held."""
        rate_limiter_slots_in_use.set(count)


# Export singleton instance
metrics = MetricsCollector()
