"""Prometheus metrics for the geodata resilience layer."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


# ── HTTP metrics ─────────────────────────────────────────────
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Provider metrics ─────────────────────────────────────────
PROVIDER_ATTEMPTS = Counter(
    "geo_provider_attempts_total",
    "Provider attempts made through the fallback executor",
    ["service", "outcome"],  # success / failure / skipped
)

PROVIDER_LATENCY = Histogram(
    "geo_provider_latency_seconds",
    "Latency of provider attempts",
    ["service"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

FALLBACKS_TOTAL = Counter(
    "geo_fallbacks_total",
    "Operations answered by the secondary provider",
    ["label"],
)

COMBINED_FAILURES_TOTAL = Counter(
    "geo_combined_failures_total",
    "Operations where both providers failed",
    ["label"],
)

# ── Cache metrics ────────────────────────────────────────────
CACHE_LOOKUPS = Counter(
    "geo_cache_lookups_total",
    "Cache lookups by namespace and result",
    ["namespace", "result"],  # hot_hit / durable_hit / miss / expired / corrupt
)

# ── Monitoring ───────────────────────────────────────────────
ACTIVE_ALERTS = Gauge(
    "geo_active_alerts",
    "Alerts raised by the most recent evaluation",
    ["type"],
)

OVERALL_HEALTH_SCORE = Gauge(
    "geo_overall_health_score",
    "Mean availability-weighted success rate across tracked services",
)
