"""Application metrics using the Prometheus client library.

Every metric the service exports is defined here, so this file doubles
as the inventory of what engagement-service measures.  Modules import
the metric they own and increment it at the point of action.

Counters only go up, which makes them the right type for "how many
views were recorded" or "how many scheduler calls failed".  Gauges go
up and down (in-flight requests).  Histograms bucket observations so
Prometheus can compute percentiles for the latency SLO.

The store and scheduler layers swallow their failures by contract (a
lost analytics write must never break a page view).  The error counters
below are what makes those swallowed failures visible on a dashboard.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    # Most calls are one to a handful of Redis round-trips; the
    # recommender and the daily rollup are the long tail.
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Engagement metrics
# ---------------------------------------------------------------------------

KV_STORE_ERRORS = Counter(
    "kv_store_errors_total",
    "Store operations that failed and were degraded to a neutral value",
    ["operation"],  # "zadd", "incr", "hgetall", ...
)

COURSE_VIEWS_RECORDED = Counter(
    "course_views_recorded_total",
    "Course views recorded by the activity recorder",
)

RECOMMENDATIONS_SERVED = Counter(
    "recommendations_served_total",
    "Recommended courses returned, by the signal that produced them",
    ["source"],  # "neighbors" or "popular"
)

NOTIFICATIONS = Counter(
    "notifications_total",
    "Notification mailbox events",
    ["event"],  # "added", "read", "read_all"
)

SCHEDULER_REQUESTS = Counter(
    "scheduler_requests_total",
    "Calls to the external delivery scheduler",
    ["operation", "result"],  # operation: publish|cancel, result: ok|error
)

ROLLUP_EVENTS_PROCESSED = Counter(
    "daily_rollup_events_processed_total",
    "Raw activity events folded into daily rollups",
)
