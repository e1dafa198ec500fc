"""Prometheus metrics for session refreshes, retries and aggregation health"""

from prometheus_client import Counter, Histogram

# Session metrics
refresh_counter = Counter(
    "policy_portal_refresh_total",
    "Token refresh attempts",
    ["outcome"],  # success | rejected | network | no_session
)

refresh_latency_histogram = Histogram(
    "policy_portal_refresh_latency_seconds",
    "Refresh endpoint response time",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0],
)

auth_retry_counter = Counter(
    "policy_portal_auth_retries_total",
    "Requests re-issued after an authorization failure",
)

# Aggregation metrics
package_detail_failures_counter = Counter(
    "policy_portal_package_detail_failures_total",
    "Package detail fetches degraded to summary-only view models",
)

category_fetch_failures_counter = Counter(
    "policy_portal_category_fetch_failures_total",
    "Applications-by-category fetches substituted with an empty list",
    ["category"],
)

# Transport
request_duration_histogram = Histogram(
    "policy_portal_http_request_duration_seconds",
    "Backend request latency",
    ["method", "endpoint", "status"],
)


def record_refresh(outcome: str) -> None:
    """Record a settled refresh operation"""
    refresh_counter.labels(outcome=outcome).inc()
