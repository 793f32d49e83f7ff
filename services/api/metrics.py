"""Prometheus metrics for API service.

Exposes HTTP request counts and durations. Domain counters (finalized
documents, projection requests and fallbacks) live next to the code that
increments them and share the default registry.

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.openmetrics.exposition import CONTENT_TYPE_LATEST

# Request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Projection endpoint latency (includes LLM round trips and fallbacks)
projection_duration_seconds = Histogram(
    "projection_duration_seconds",
    "Projection and analysis request duration in seconds",
    ["operation"],
    buckets=(0.01, 0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0),
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
