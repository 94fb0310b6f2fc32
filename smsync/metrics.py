"""
Prometheus metrics for the sync API.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Upload outcome counter (result) and merged record counter
- Command status transition counter (status)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# result: ok, aborted, rejected
log_upload_outcomes_total = Counter(
    "log_upload_outcomes_total",
    "Total log upload batch outcomes",
    labelnames=["result"]
)

log_records_merged_total = Counter(
    "log_records_merged_total",
    "Total log records inserted or merged"
)

command_transitions_total = Counter(
    "command_transitions_total",
    "Total command status transitions, labelled by the status entered",
    labelnames=["status"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_upload_outcome(result: str) -> None:
    """
    Record a log upload outcome.

    Args:
        result: Processing result - one of:
            - "ok": Every record merged
            - "aborted": A record failed; earlier records stayed applied
            - "rejected": Batch refused before any mutation
    """
    log_upload_outcomes_total.labels(result=result).inc()


def record_logs_merged(count: int) -> None:
    if count:
        log_records_merged_total.inc(count)


def record_command_transition(status: str) -> None:
    command_transitions_total.labels(status=status).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
