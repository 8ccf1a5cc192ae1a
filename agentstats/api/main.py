"""FastAPI backend for agent statistics.

One tracker is built at startup from settings and shared across requests.
Upstream events can be pushed to ``POST /events``; a host that owns a live
protocol client sets ``app.state.event_source`` before startup to get
real-time subscription and the periodic refresh.
"""

import logging
import time
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field

from agentstats.config import get_settings
from agentstats.memory.kv import SQLiteKeyValueStore, build_key_value_store
from agentstats.observability.metrics import APP_INFO, REQUEST_DURATION, REQUESTS_TOTAL
from agentstats.scheduler import start_refresh_scheduler, stop_refresh_scheduler
from agentstats.stats.models import (
    AgentStats,
    AgentStatsPeriod,
    CallDirection,
    CallDisposition,
    CallHistoryFilter,
    CallRecord,
    HourlyStats,
    QueueStats,
    StatsAlert,
)
from agentstats.tracker import AgentStatsTracker, TrackerConfig

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class CallRequest(BaseModel):
    """Request body for POST /calls."""

    call_id: str | None = None
    queue: str | None = None
    remote_party: str = ""
    direction: CallDirection = "inbound"
    start_time: datetime | None = None
    answer_time: datetime | None = None
    end_time: datetime | None = None
    wait_time: float | None = Field(default=None, ge=0)
    talk_time: float = Field(default=0.0, ge=0)
    hold_time: float = Field(default=0.0, ge=0)
    wrap_time: float = Field(default=0.0, ge=0)
    disposition: CallDisposition = "answered"
    transferred_to: str | None = None
    recorded: bool = False
    quality_score: float | None = Field(default=None, ge=1, le=5)
    tags: list[str] = Field(default_factory=list)


class WrapRequest(BaseModel):
    """Request body for POST /calls/{call_id}/wrap."""

    wrap_time: float = Field(ge=0)


class PeriodRequest(BaseModel):
    """Request body for POST /period."""

    period: AgentStatsPeriod
    start: datetime | None = None
    end: datetime | None = None


class EventResponse(BaseModel):
    recorded: bool


class PeakHoursResponse(BaseModel):
    hours: list[int]


class AlertsResponse(BaseModel):
    alerts: list[StatsAlert]
    unacknowledged: int


class AckResponse(BaseModel):
    acknowledged: int


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str
    agent_id: str
    tracking: bool
    error: str | None = None


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build and start the tracker at startup, flush and stop it on shutdown."""
    settings = get_settings()
    APP_INFO.info({"version": VERSION, "agent_id": settings.agent_id})

    try:
        config = TrackerConfig.from_settings(settings)
    except ValueError:
        logger.exception("Invalid tracker configuration (is AGENT_ID set?)")
        raise

    kv_store = build_key_value_store(settings.stats_db_path) if settings.stats_persist else None
    tracker = AgentStatsTracker(
        config,
        event_source=getattr(app.state, "event_source", None),
        kv_store=kv_store,
    )
    tracker.start()
    app.state.tracker = tracker
    logger.info("Agent stats tracker ready for %s", config.agent_id)

    start_refresh_scheduler(tracker, settings.refresh_interval_seconds)
    yield
    stop_refresh_scheduler()
    tracker.close()
    if isinstance(kv_store, SQLiteKeyValueStore):
        kv_store.close()
    logger.info("Shutting down agent stats service")


app = FastAPI(title="Agent Performance Statistics", lifespan=lifespan)


def _tracker() -> AgentStatsTracker:
    tracker: AgentStatsTracker = app.state.tracker
    return tracker


@contextmanager
def _instrumented(endpoint: str) -> Iterator[None]:
    """Record request count and duration for ``endpoint``."""
    start = time.monotonic()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        REQUEST_DURATION.labels(endpoint=endpoint).observe(time.monotonic() - start)
        REQUESTS_TOTAL.labels(endpoint=endpoint, status=status).inc()


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Report whether the tracker is running and its last refresh error."""
    tracker = _tracker()
    status = "healthy" if tracker.is_tracking and tracker.error is None else "degraded"
    return HealthResponse(
        status=status,
        agent_id=tracker.agent_id,
        tracking=tracker.is_tracking,
        error=tracker.error,
    )


@app.get("/stats", response_model=AgentStats)
async def get_stats() -> AgentStats:
    with _instrumented("/stats"):
        return _tracker().stats


@app.get("/stats/hourly", response_model=list[HourlyStats])
async def get_hourly() -> list[HourlyStats]:
    with _instrumented("/stats/hourly"):
        return _tracker().get_hourly_breakdown()


@app.get("/stats/queues", response_model=list[QueueStats])
async def get_queues(queue: str | None = None) -> list[QueueStats]:
    with _instrumented("/stats/queues"):
        return _tracker().get_queue_stats(queue)


@app.get("/stats/peak-hours", response_model=PeakHoursResponse)
async def get_peak_hours() -> PeakHoursResponse:
    with _instrumented("/stats/peak-hours"):
        return PeakHoursResponse(hours=_tracker().peak_hours)


@app.get("/calls", response_model=list[CallRecord])
async def get_calls(
    limit: int | None = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    direction: CallDirection | None = None,
    disposition: CallDisposition | None = None,
    queue: str | None = None,
    since: datetime | None = None,
) -> list[CallRecord]:
    """Recent calls, newest first, optionally filtered."""
    with _instrumented("/calls"):
        call_filter = CallHistoryFilter(direction=direction, disposition=disposition, queue=queue, since=since)
        return _tracker().get_call_history(call_filter, limit=limit, offset=offset)


@app.post("/calls", response_model=CallRecord, status_code=201)
async def post_call(request: CallRequest) -> CallRecord:
    """Manually record a completed call."""
    with _instrumented("/calls:post"):
        record = _tracker().record_call(request.model_dump(exclude_none=True))
        if record is None:
            raise HTTPException(status_code=409, detail=f"Call {request.call_id} already recorded")
        return record


@app.post("/calls/{call_id}/wrap", response_model=CallRecord)
async def post_wrap_time(call_id: str, request: WrapRequest) -> CallRecord:
    """Apply wrap-up time to a recent call."""
    with _instrumented("/calls/wrap"):
        tracker = _tracker()
        if not tracker.record_wrap_time(call_id, request.wrap_time):
            raise HTTPException(status_code=404, detail=f"Call {call_id} not found in recent history")
        matches = [c for c in tracker.get_call_history() if c.call_id == call_id]
        return matches[0]


@app.post("/events", response_model=EventResponse)
async def post_event(payload: dict[str, Any]) -> EventResponse:
    """Ingest one raw upstream event (bare data or ``{"type", "data"}`` envelope)."""
    with _instrumented("/events"):
        return EventResponse(recorded=_tracker().handle_event(payload))


@app.get("/alerts", response_model=AlertsResponse)
async def get_alerts() -> AlertsResponse:
    with _instrumented("/alerts"):
        tracker = _tracker()
        return AlertsResponse(alerts=tracker.alerts, unacknowledged=tracker.alert_count)


@app.post("/alerts/ack-all", response_model=AckResponse)
async def ack_all_alerts() -> AckResponse:
    with _instrumented("/alerts/ack-all"):
        return AckResponse(acknowledged=_tracker().acknowledge_all_alerts())


@app.post("/alerts/{alert_id}/ack", response_model=AckResponse)
async def ack_alert(alert_id: str) -> AckResponse:
    with _instrumented("/alerts/ack"):
        if not _tracker().acknowledge_alert(alert_id):
            raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")
        return AckResponse(acknowledged=1)


@app.post("/period", response_model=AgentStats)
async def post_period(request: PeriodRequest) -> AgentStats:
    """Switch the statistics period. Counters restart from zero."""
    with _instrumented("/period"):
        tracker = _tracker()
        tracker.set_period(request.period, request.start, request.end)
        return tracker.stats


@app.post("/reset", response_model=AgentStats)
async def post_reset() -> AgentStats:
    with _instrumented("/reset"):
        tracker = _tracker()
        tracker.reset_stats()
        return tracker.stats


@app.get("/export.csv")
async def export_csv() -> Response:
    """Recent calls as CSV."""
    with _instrumented("/export.csv"):
        tracker = _tracker()
        return Response(
            content=tracker.export_csv(),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="agent-{tracker.agent_id}-calls.csv"'},
        )


@app.get("/export.json")
async def export_json() -> Response:
    """Full statistics as JSON."""
    with _instrumented("/export.json"):
        return Response(content=_tracker().export_json(), media_type="application/json")
