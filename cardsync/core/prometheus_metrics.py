"""
Prometheus metrics for CardSync.

Exports metrics in Prometheus format for monitoring and alerting.
"""
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# CardTrader API Metrics
cardtrader_api_requests_total = Counter(
    "cardsync_cardtrader_api_requests_total",
    "Total CardTrader API requests",
    ["method", "endpoint", "status_code"],
)

cardtrader_api_request_duration_seconds = Histogram(
    "cardsync_cardtrader_api_request_duration_seconds",
    "CardTrader API request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

cardtrader_api_retries_total = Counter(
    "cardsync_cardtrader_api_retries_total",
    "Retries of transient CardTrader failures",
    ["endpoint", "reason"],
)

# Rate Limiting Metrics
rate_limiter_rejections_total = Counter(
    "cardsync_rate_limiter_rejections_total",
    "Calls rejected because the rate limiter wait queue was full",
)

# Circuit Breaker Metrics
circuit_breaker_state = Gauge(
    "cardsync_circuit_breaker_state",
    "Circuit breaker state (0=CLOSED, 1=OPEN, 2=HALF_OPEN)",
    ["service"],
)

# Sync Metrics
sync_records_total = Counter(
    "cardsync_sync_records_total",
    "Records processed by the upsert engine",
    ["entity", "outcome"],  # outcome: added, updated, skipped, failed
)

sync_phase_failures_total = Counter(
    "cardsync_sync_phase_failures_total",
    "Sync phases aborted by an exception",
    ["entity"],
)

sync_run_duration_seconds = Histogram(
    "cardsync_sync_run_duration_seconds",
    "Sync run duration in seconds",
    ["trigger"],
    buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 300.0, 600.0, 1800.0],
)

# Webhook Metrics
webhooks_total = Counter(
    "cardsync_webhooks_total",
    "Webhooks by cause and final state",
    ["cause", "state"],
)

# Pending listings
listing_publish_total = Counter(
    "cardsync_listing_publish_total",
    "Pending listing publish attempts",
    ["outcome"],  # success, error
)

# Local inventory edits pushed to CardTrader
inventory_push_total = Counter(
    "cardsync_inventory_push_total",
    "Inventory item changes pushed to CardTrader",
    ["operation", "outcome"],  # update/delete; success, error, skipped
)


def get_metrics_response():
    """
    Get Prometheus metrics in text format.

    Returns:
        Tuple of (metrics_text, content_type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
