"""Prometheus metrics definitions for the fan-out service."""

from prometheus_client import Counter, Histogram, Info

# ---------------------------------------------------------------------------
# HTTP layer
# ---------------------------------------------------------------------------

HTTP_REQUESTS_TOTAL = Counter(
    "fanout_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

HTTP_REQUEST_DURATION = Histogram(
    "fanout_http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

RATE_LIMIT_HITS_TOTAL = Counter(
    "fanout_rate_limit_hits_total",
    "Number of requests rejected by rate limiter",
)

# ---------------------------------------------------------------------------
# Inbound webhooks
# ---------------------------------------------------------------------------

INBOUND_WEBHOOKS_TOTAL = Counter(
    "fanout_inbound_webhooks_total",
    "Inbound webhooks received, by final processing status",
    ["status"],           # "completed" | "failed"
)

# ---------------------------------------------------------------------------
# Outbound deliveries
# ---------------------------------------------------------------------------

DELIVERIES_TOTAL = Counter(
    "fanout_deliveries_total",
    "Total outbound delivery attempts",
    ["success", "primary"],   # "true" | "false"
)

DELIVERY_DURATION = Histogram(
    "fanout_delivery_duration_seconds",
    "Downstream HTTP latency per delivery attempt",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

DELIVERY_LOG_WRITE_FAILURES_TOTAL = Counter(
    "fanout_delivery_log_write_failures_total",
    "Delivery log entries that could not be persisted",
)

# ---------------------------------------------------------------------------
# Replay
# ---------------------------------------------------------------------------

REPLAYS_TOTAL = Counter(
    "fanout_replays_total",
    "Replayed webhooks, by outcome",
    ["status"],           # "completed" | "failed" | "error"
)

# ---------------------------------------------------------------------------
# Service info
# ---------------------------------------------------------------------------

SERVICE_INFO = Info(
    "fanout_service",
    "Webhook fan-out service metadata",
)
SERVICE_INFO.info({"version": "0.1.0"})
