"""
Prometheus metrics for the dispatch engine.

Registered in the global prometheus_client REGISTRY on import; expose them
with ``prometheus_client.start_http_server`` or the service's /metrics.
"""

from prometheus_client import Counter, Gauge, Histogram


# --- Dispatch metrics ---

DISPATCH_OUTCOMES_TOTAL = Counter(
    "relay_dispatch_outcomes_total",
    "Dispatch calls by resulting outcome status",
    ["status"],
)

ADMISSION_DENIED_TOTAL = Counter(
    "relay_admission_denied_total",
    "Dispatch calls refused by the rate limiter",
)

DEAD_LETTERS_TOTAL = Counter(
    "relay_dead_letters_total",
    "Messages escalated after hitting the requeue cap",
)

# --- Backend metrics ---

BACKEND_ATTEMPTS_TOTAL = Counter(
    "relay_backend_attempts_total",
    "Backend send attempts",
    ["backend", "outcome"],
)

BACKEND_SEND_LATENCY = Histogram(
    "relay_backend_send_latency_seconds",
    "Backend send latency in seconds",
    ["backend"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10],
)

CIRCUIT_STATE = Gauge(
    "relay_circuit_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["backend"],
)

# --- Queue metrics ---

DEFERRED_QUEUE_DEPTH = Gauge(
    "relay_deferred_queue_depth",
    "Messages waiting on the deferred queue",
)

CIRCUIT_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


class MetricsRegistry:
    """Groups the relay metrics for callers that prefer attribute access."""

    dispatch_outcomes_total = DISPATCH_OUTCOMES_TOTAL
    admission_denied_total = ADMISSION_DENIED_TOTAL
    dead_letters_total = DEAD_LETTERS_TOTAL
    backend_attempts_total = BACKEND_ATTEMPTS_TOTAL
    backend_send_latency = BACKEND_SEND_LATENCY
    circuit_state = CIRCUIT_STATE
    deferred_queue_depth = DEFERRED_QUEUE_DEPTH


# Singleton instance
metrics_registry = MetricsRegistry()
