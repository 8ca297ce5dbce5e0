"""Prometheus metrics definitions for the insight service.

All metric objects are centralized here as module-level singletons.
Import what you need from anywhere in the codebase:

    from insights.common.metrics import CACHE_LOOKUPS_TOTAL, PIPELINE_RUNS_TOTAL

The /metrics endpoint is mounted in insights/main.py via
prometheus_client.make_asgi_app().
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Info

# ─── App Info ───

APP_INFO = Info("app", "Application metadata")

# ─── HTTP Metrics ───

HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path_template", "status_code"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    labelnames=["method", "path_template"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "HTTP requests currently in progress",
    labelnames=["method"],
)

# ─── Admission ───

ADMISSION_DECISIONS_TOTAL = Counter(
    "insight_admission_decisions_total",
    "Admission controller decisions",
    labelnames=["tier", "reason"],
)

# ─── Response Cache ───

CACHE_LOOKUPS_TOTAL = Counter(
    "insight_cache_lookups_total",
    "Response cache lookups",
    labelnames=["result"],  # hit, miss, expired, error
)

CACHE_EVICTIONS_TOTAL = Counter(
    "insight_cache_evictions_total",
    "Response cache evictions",
    labelnames=["cause"],  # capacity, ttl
)

# ─── Data Fusion ───

UPSTREAM_FETCHES_TOTAL = Counter(
    "insight_upstream_fetches_total",
    "Market and news fetch attempts",
    labelnames=["source", "outcome"],  # outcome: success, timeout, error, parse_error
)

DATA_QUALITY = Histogram(
    "insight_data_quality",
    "Blended data quality score per pipeline run",
    buckets=(0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0),
)

# ─── Ensemble ───

ENSEMBLE_MEMBER_RUNS_TOTAL = Counter(
    "insight_ensemble_member_runs_total",
    "Ensemble member scoring outcomes",
    labelnames=["member", "status"],
)

ENSEMBLE_DISAGREEMENT = Histogram(
    "insight_ensemble_disagreement",
    "Max-min spread of member probabilities",
    buckets=(0.02, 0.05, 0.1, 0.15, 0.2, 0.3, 0.5),
)

# ─── Pipeline ───

PIPELINE_RUNS_TOTAL = Counter(
    "insight_pipeline_runs_total",
    "Insight pipeline outcomes",
    labelnames=["analysis_type", "outcome"],  # outcome: success, fallback, cached
)

PIPELINE_DURATION_SECONDS = Histogram(
    "insight_pipeline_duration_seconds",
    "Insight pipeline duration end-to-end (cache misses only)",
    labelnames=["analysis_type"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0),
)


def set_app_info(version: str, environment: str) -> None:
    """Set the app_info metric values. Called once at startup."""
    APP_INFO.info({"version": version, "environment": environment})
