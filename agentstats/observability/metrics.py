"""Prometheus metric definitions for agent statistics self-instrumentation.

All metrics are module-level singletons registered with the default
prometheus_client registry.  Import them wherever instrumentation is needed.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# ---------------------------------------------------------------------------
# Histogram bucket definitions
# ---------------------------------------------------------------------------

REQUEST_DURATION_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5)
PERSIST_DURATION_BUCKETS = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0)

# ---------------------------------------------------------------------------
# Ingestion metrics
# ---------------------------------------------------------------------------

CALLS_RECORDED_TOTAL = Counter(
    "agentstats_calls_recorded_total",
    "Total number of calls folded into agent statistics",
    labelnames=["direction", "disposition"],
)

EVENTS_TOTAL = Counter(
    "agentstats_events_total",
    "Upstream events seen, by kind and outcome",
    labelnames=["kind", "status"],
)

# ---------------------------------------------------------------------------
# KPI / alert metrics
# ---------------------------------------------------------------------------

AGENT_KPI = Gauge(
    "agentstats_agent_kpi",
    "Current value of a derived agent KPI",
    labelnames=["agent_id", "kpi"],
)

ALERTS_RAISED_TOTAL = Counter(
    "agentstats_alerts_raised_total",
    "Total number of threshold alerts raised",
    labelnames=["metric", "level"],
)

UNACKNOWLEDGED_ALERTS = Gauge(
    "agentstats_unacknowledged_alerts",
    "Number of alerts not yet acknowledged",
    labelnames=["agent_id"],
)

# ---------------------------------------------------------------------------
# Persistence / refresh metrics
# ---------------------------------------------------------------------------

PERSISTENCE_WRITES_TOTAL = Counter(
    "agentstats_persistence_writes_total",
    "Total number of snapshot writes to the key/value store",
    labelnames=["status"],
)

PERSISTENCE_WRITE_DURATION = Histogram(
    "agentstats_persistence_write_duration_seconds",
    "Time taken to serialize and store a snapshot in seconds",
    buckets=PERSIST_DURATION_BUCKETS,
)

REFRESH_TOTAL = Counter(
    "agentstats_refresh_total",
    "Total number of refresh attempts against the upstream client",
    labelnames=["status"],
)

# ---------------------------------------------------------------------------
# Request-level metrics (HTTP API)
# ---------------------------------------------------------------------------

REQUEST_DURATION = Histogram(
    "agentstats_request_duration_seconds",
    "End-to-end request duration in seconds",
    labelnames=["endpoint"],
    buckets=REQUEST_DURATION_BUCKETS,
)

REQUESTS_TOTAL = Counter(
    "agentstats_requests_total",
    "Total number of requests",
    labelnames=["endpoint", "status"],
)

APP_INFO = Info(
    "agentstats",
    "Agent statistics service build information",
)

# KPIs exported as gauges after every mutation
GAUGED_KPIS: tuple[str, ...] = (
    "calls_per_hour",
    "avg_handle_time",
    "service_level",
    "occupancy",
    "utilization",
    "transfer_rate",
)
