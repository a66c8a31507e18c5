"""Prometheus metrics for the Veritas scraper.

All metrics are module-level singletons registered on the default
``REGISTRY``.

Metrics defined here:

  scraping_jobs_total{status}
      Counter — scraping jobs reaching a terminal state, by final status
      (successful, partial, failed, cancelled).

  scraped_articles_total{processing_status}
      Counter — stored articles by processing status (completed,
      completed-low-quality, failed).

  article_fetch_duration_seconds{outcome}
      Histogram — article fetch latency, by outcome (success, error,
      timeout).

  source_health_status{source}
      Gauge — per-source health indicator.  1 = healthy, 0 = unhealthy.

  http_requests_total{method, path, status}
      Counter — HTTP requests handled by the FastAPI application.

  http_request_duration_seconds{method, path}
      Histogram — HTTP request latency in seconds.

Usage::

    from veritas_scraper.api.metrics import scraping_jobs_total
    scraping_jobs_total.labels(status="successful").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# Scraping metrics
# ---------------------------------------------------------------------------

scraping_jobs_total: Counter = Counter(
    "scraping_jobs_total",
    "Scraping jobs reaching a terminal state, by final status.",
    labelnames=["status"],
)

scraped_articles_total: Counter = Counter(
    "scraped_articles_total",
    "Stored articles by processing status.",
    labelnames=["processing_status"],
)

article_fetch_duration_seconds: Histogram = Histogram(
    "article_fetch_duration_seconds",
    "Article fetch latency in seconds.",
    labelnames=["outcome"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0],
)
"""Histogram of article fetch durations.

Labels:
  outcome: one of success, error, timeout
"""

source_health_status: Gauge = Gauge(
    "source_health_status",
    "Per-source health indicator. 1 = healthy, 0 = unhealthy.",
    labelnames=["source"],
)
"""Gauge updated whenever the orchestrator persists a source's health.

Labels:
  source: source name
"""

# ---------------------------------------------------------------------------
# HTTP metrics (populated by middleware in main.py)
# ---------------------------------------------------------------------------

http_requests_total: Counter = Counter(
    "http_requests_total",
    "HTTP requests handled by the FastAPI application.",
    labelnames=["method", "path", "status"],
)

http_request_duration_seconds: Histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds.",
    labelnames=["method", "path"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)


# ---------------------------------------------------------------------------
# Response helper
# ---------------------------------------------------------------------------


def get_metrics_response() -> tuple[bytes, str]:
    """Generate a Prometheus text-format metrics response.

    Returns:
        A tuple of (body_bytes, content_type_string) suitable for constructing
        a FastAPI ``Response`` object.
    """
    from prometheus_client import CONTENT_TYPE_LATEST, generate_latest  # noqa: PLC0415

    return generate_latest(), CONTENT_TYPE_LATEST
