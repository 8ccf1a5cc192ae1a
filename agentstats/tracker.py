"""Tracking controller: wires events -> store -> alerts -> persistence.

``AgentStatsTracker`` owns the statistics for one agent. It subscribes to an
upstream ``EventSource`` between ``start()`` and ``stop()``, accepts manual
call records, evaluates alert thresholds after every mutation, and schedules
debounced persistence of the full snapshot.

Every mutation runs under one re-entrant lock, so a multi-threaded host (the
FastAPI threadpool, an event-delivery thread, the persistence scheduler) can
share a tracker. Read operations return copies taken under the same lock.
"""

import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any, Protocol

from pydantic import BaseModel, Field, field_validator

from agentstats.config import Settings
from agentstats.memory.kv import InMemoryKeyValueStore, KeyValueStore
from agentstats.memory.persistence import DEFAULT_DEBOUNCE_SECONDS, StatsPersistence, StatsSnapshot
from agentstats.observability.metrics import (
    AGENT_KPI,
    ALERTS_RAISED_TOTAL,
    CALLS_RECORDED_TOTAL,
    EVENTS_TOTAL,
    GAUGED_KPIS,
    REFRESH_TOTAL,
    UNACKNOWLEDGED_ALERTS,
)
from agentstats.stats import export
from agentstats.stats.alerts import DEFAULT_MAX_ALERT_HISTORY, DEFAULT_THRESHOLDS, AlertEngine
from agentstats.stats.events import (
    EventFilter,
    QueueMemberStatusEvent,
    UnrecognizedEvent,
    extract_agent_id,
    normalize_event,
    parse_event,
    sanitize_label,
    to_text,
    validate_interface_pattern,
)
from agentstats.stats.kpis import GradingPolicy, format_duration
from agentstats.stats.models import (
    AgentStats,
    AgentStatsPeriod,
    CallHistoryFilter,
    CallRecord,
    HourlyStats,
    PerformanceLevel,
    QueueStats,
    StatsAlert,
    StatsThreshold,
    TeamComparison,
)
from agentstats.stats.store import DEFAULT_MAX_RECENT_CALLS, DEFAULT_SERVICE_LEVEL_THRESHOLD, AgentStatsStore

logger = logging.getLogger(__name__)

AMI_UNAVAILABLE = "AMI client not available"

# Upstream event kinds the tracker subscribes a handler for
TRACKED_EVENT_KINDS: tuple[str, ...] = ("AgentComplete", "AgentRingNoAnswer", "QueueMemberStatus")

EventHandler = Callable[[Mapping[str, Any]], None]


class EventSource(Protocol):
    """The upstream protocol client (e.g. an AMI connection)."""

    def on(self, handler: EventHandler) -> None: ...

    def off(self, handler: EventHandler) -> None: ...

    async def send_action(self, action: Mapping[str, str]) -> Any: ...


class TrackerConfig(BaseModel):
    """Construction-time configuration for one tracked agent."""

    agent_id: str
    agent_name: str = ""
    interface_pattern: str = ""
    queues: list[str] = Field(default_factory=list)
    period: AgentStatsPeriod = "today"
    custom_start: datetime | None = None
    custom_end: datetime | None = None
    service_level_threshold: float = Field(default=DEFAULT_SERVICE_LEVEL_THRESHOLD, ge=0)
    max_recent_calls: int = Field(default=DEFAULT_MAX_RECENT_CALLS, ge=1)
    max_alert_history: int = Field(default=DEFAULT_MAX_ALERT_HISTORY, ge=1)
    realtime_updates: bool = True
    thresholds: list[StatsThreshold] = Field(default_factory=lambda: list(DEFAULT_THRESHOLDS))
    grading: GradingPolicy = Field(default_factory=GradingPolicy)
    persist: bool = False
    storage_key: str = "agent_stats"
    persist_debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS

    @field_validator("agent_id")
    @classmethod
    def _agent_id_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            msg = "agent_id must be a non-empty identifier"
            raise ValueError(msg)
        return value

    @field_validator("interface_pattern")
    @classmethod
    def _valid_pattern(cls, value: str) -> str:
        return validate_interface_pattern(value.strip())

    @field_validator("queues")
    @classmethod
    def _strip_queues(cls, value: list[str]) -> list[str]:
        return [q.strip() for q in value if q.strip()]

    @classmethod
    def from_settings(cls, settings: Settings) -> "TrackerConfig":
        """Build a tracker config from environment settings."""
        return cls(
            agent_id=settings.agent_id,
            agent_name=settings.agent_name,
            interface_pattern=settings.agent_interface_pattern,
            queues=settings.queue_list(),
            period=settings.stats_period,  # type: ignore[arg-type]
            service_level_threshold=settings.service_level_threshold,
            max_recent_calls=settings.max_recent_calls,
            max_alert_history=settings.max_alert_history,
            realtime_updates=settings.realtime_updates,
            persist=settings.stats_persist,
            storage_key=settings.stats_storage_key,
            persist_debounce_seconds=settings.persist_debounce_seconds,
        )


class AgentStatsTracker:
    """Live statistics, alerts, and persistence for one agent."""

    def __init__(
        self,
        config: TrackerConfig,
        *,
        event_source: EventSource | None = None,
        kv_store: KeyValueStore | None = None,
        on_stats_update: Callable[[AgentStats], None] | None = None,
        on_alert: Callable[[StatsAlert], None] | None = None,
        on_error: Callable[[str], None] | None = None,
    ) -> None:
        self.config = config
        self.event_source = event_source
        self.on_stats_update = on_stats_update
        self.on_alert = on_alert
        self.on_error = on_error

        self.is_tracking = False
        self.is_loading = False
        self.error: str | None = None

        self._lock = threading.RLock()
        self._handlers: list[EventHandler] = []
        self._peers: dict[str, AgentStats] = {}
        self._filter = EventFilter(
            agent_id=config.agent_id,
            queues=tuple(config.queues),
            interface_pattern=config.interface_pattern,
        )
        self._store = AgentStatsStore(
            config.agent_id,
            interface=config.interface_pattern or f"PJSIP/{config.agent_id}",
            name=config.agent_name or config.agent_id,
            period=config.period,
            period_start=config.custom_start,
            period_end=config.custom_end,
            max_recent_calls=config.max_recent_calls,
            service_level_threshold=config.service_level_threshold,
            grading_policy=config.grading,
        )
        self._alerts = AlertEngine(
            config.thresholds,
            max_history=config.max_alert_history,
            on_alert=self._alert_raised,
        )
        self._persistence: StatsPersistence | None = None
        if config.persist:
            self._persistence = StatsPersistence(
                kv_store if kv_store is not None else InMemoryKeyValueStore(),
                config.storage_key,
                debounce_seconds=config.persist_debounce_seconds,
            )

    @property
    def agent_id(self) -> str:
        return self.config.agent_id

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Load persisted state and subscribe to events. No-op if already tracking."""
        with self._lock:
            if self.is_tracking:
                return
            self.is_tracking = True
            if self._persistence is not None:
                self._load_persisted(self._persistence)
            if self.config.realtime_updates and self.event_source is not None:
                self._subscribe(self.event_source)
            self._update_gauges()
        logger.info("Agent stats tracking started for %s (queues=%s)", self.agent_id, self.config.queues or "all")

    def stop(self) -> None:
        """Unsubscribe every handler and flush persistence. No-op if not tracking."""
        with self._lock:
            if not self.is_tracking:
                return
            self.is_tracking = False
            self._unsubscribe()
        if self._persistence is not None:
            self._persistence.flush()
        logger.info("Agent stats tracking stopped for %s", self.agent_id)

    def close(self) -> None:
        """Stop tracking and shut down the persistence scheduler."""
        self.stop()
        if self._persistence is not None:
            self._persistence.shutdown()

    def _subscribe(self, source: EventSource) -> None:
        for kind in TRACKED_EVENT_KINDS:
            handler = self._make_handler(kind)
            source.on(handler)
            self._handlers.append(handler)

    def _unsubscribe(self) -> None:
        source = self.event_source
        if source is not None:
            for handler in self._handlers:
                source.off(handler)
        self._handlers.clear()

    def _make_handler(self, kind: str) -> EventHandler:
        def handler(payload: Mapping[str, Any]) -> None:
            data = payload.get("data", payload) if isinstance(payload, Mapping) else None
            if isinstance(data, Mapping) and to_text(data.get("Event")) == kind:
                self.handle_event(payload)

        handler.__name__ = f"on_{kind}"
        return handler

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def handle_event(self, payload: Mapping[str, Any]) -> bool:
        """Feed one upstream message through the pipeline. Returns True if a call was recorded."""
        event = parse_event(payload)
        if isinstance(event, UnrecognizedEvent):
            if event.malformed:
                logger.debug("Ignoring malformed upstream event %s", event.kind or "(no kind)")
            EVENTS_TOTAL.labels(kind="other", status="ignored").inc()
            return False
        if isinstance(event, QueueMemberStatusEvent):
            return self._apply_member_status(event)

        record = normalize_event(event, self._filter)
        if record is None:
            EVENTS_TOTAL.labels(kind=event.kind, status="filtered").inc()
            logger.debug("Dropped %s event for %s", event.kind, event.agent_label or "unknown interface")
            return False

        recorded = self._ingest(record)
        EVENTS_TOTAL.labels(kind=event.kind, status="recorded" if recorded else "duplicate").inc()
        return recorded

    def record_call(self, call: CallRecord | Mapping[str, Any]) -> CallRecord | None:
        """Manually record a completed call. A missing ``call_id`` is generated.

        Returns the stored record, or None when a call with the same id is
        already in recent history and the call was dropped.
        """
        if isinstance(call, CallRecord):
            record = call.model_copy(deep=True)
        else:
            record = CallRecord.model_validate(dict(call))
        if not self._ingest(record):
            logger.debug("Duplicate call %s dropped", record.call_id)
            return None
        return record.model_copy()

    def record_wrap_time(self, call_id: str, seconds: float) -> bool:
        """Apply a late-arriving wrap time. Unknown call ids are a no-op."""
        with self._lock:
            if not self._store.update_wrap_time(call_id, seconds):
                logger.debug("Wrap time for unknown call %s ignored", call_id)
                return False
            self._after_mutation()
        return True

    def add_presence_time(
        self,
        *,
        login: float = 0.0,
        available: float = 0.0,
        paused: float = 0.0,
        on_call: float = 0.0,
    ) -> None:
        """Accumulate login/available/paused/on-call seconds reported by the host."""
        with self._lock:
            self._store.add_presence_time(login=login, available=available, paused=paused, on_call=on_call)
            self._after_mutation()

    def _ingest(self, record: CallRecord) -> bool:
        with self._lock:
            if not self._store.record_call(record):
                return False
            CALLS_RECORDED_TOTAL.labels(direction=record.direction, disposition=record.disposition).inc()
            self._after_mutation()
        return True

    def _apply_member_status(self, event: QueueMemberStatusEvent) -> bool:
        if not self._filter.accepts(event):
            EVENTS_TOTAL.labels(kind=event.kind, status="filtered").inc()
            return False
        name = sanitize_label(event.member_name or extract_agent_id(event.agent_label))
        with self._lock:
            self._store.apply_queue_member_status(
                event.queue,
                calls_taken=event.calls_taken,
                paused_time=event.last_pause,
                name=name,
            )
            self._after_mutation(evaluate_alerts=False)
        EVENTS_TOTAL.labels(kind=event.kind, status="recorded").inc()
        return False

    # ------------------------------------------------------------------
    # Period management
    # ------------------------------------------------------------------

    def set_period(
        self,
        period: AgentStatsPeriod,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> None:
        """Switch statistics period; counters restart from zero."""
        with self._lock:
            self._store.set_period(period, start, end)
            self._alerts.reset_state(self.agent_id)
            self._after_mutation(evaluate_alerts=False)
        logger.info("Agent %s statistics period set to %s", self.agent_id, period)

    def reset_stats(self) -> None:
        """Zero all counters for the current period. Configuration is kept."""
        with self._lock:
            self._store.reset()
            self._alerts.reset_state(self.agent_id)
            self._after_mutation(evaluate_alerts=False)
        logger.info("Agent %s statistics reset", self.agent_id)

    def clear_history(self) -> None:
        """Drop recent call records; totals are untouched."""
        with self._lock:
            self._store.clear_history()
            self._after_mutation(evaluate_alerts=False)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self) -> None:
        """Ask the upstream client for queue status and re-evaluate KPIs.

        Never raises. Without a client the error is stored and reported via
        ``on_error``. A failure for one queue is logged and skipped.
        """
        source = self.event_source
        if source is None:
            REFRESH_TOTAL.labels(status="unavailable").inc()
            self._report_error(AMI_UNAVAILABLE)
            return

        self.is_loading = True
        self.error = None
        try:
            for queue in self.config.queues:
                try:
                    await source.send_action({"Action": "QueueStatus", "Queue": queue})
                except Exception:
                    logger.warning("Failed to get status for queue %s", queue, exc_info=True)
            with self._lock:
                self._store.recompute()
                self._after_mutation()
            REFRESH_TOTAL.labels(status="success").inc()
        except Exception as exc:
            REFRESH_TOTAL.labels(status="error").inc()
            logger.exception("Failed to refresh agent stats for %s", self.agent_id)
            self._report_error(str(exc) or "Failed to refresh agent stats")
        finally:
            self.is_loading = False

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    @property
    def alerts(self) -> list[StatsAlert]:
        with self._lock:
            return self._alerts.alerts

    @property
    def alert_count(self) -> int:
        """Number of unacknowledged alerts."""
        with self._lock:
            return self._alerts.unacknowledged_count

    def acknowledge_alert(self, alert_id: str) -> bool:
        with self._lock:
            found = self._alerts.acknowledge(alert_id)
            if found:
                self._after_alert_change()
        return found

    def acknowledge_all_alerts(self) -> int:
        with self._lock:
            count = self._alerts.acknowledge_all()
            self._after_alert_change()
        return count

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def stats(self) -> AgentStats:
        """Deep copy of the tracked agent's current statistics."""
        with self._lock:
            return self._store.snapshot()

    def get_queue_stats(self, queue: str | None = None) -> list[QueueStats]:
        with self._lock:
            return export.get_queue_stats(self._store.stats, queue)

    def get_hourly_breakdown(self) -> list[HourlyStats]:
        with self._lock:
            return export.get_hourly_breakdown(self._store.stats)

    def get_call_history(
        self,
        call_filter: CallHistoryFilter | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[CallRecord]:
        with self._lock:
            return export.get_call_history(self._store.stats, call_filter, limit, offset)

    @property
    def peak_hours(self) -> list[int]:
        with self._lock:
            return export.peak_hours(self._store.stats)

    @property
    def top_queues(self) -> list[QueueStats]:
        with self._lock:
            return export.top_queues(self._store.stats)

    def export_csv(self) -> str:
        with self._lock:
            return export.export_csv(self._store.stats)

    def export_json(self) -> str:
        with self._lock:
            return export.export_json(self._store.stats)

    def set_peer_stats(self, peers: Iterable[AgentStats]) -> None:
        """Replace the team snapshot used by ``compare_to_team``."""
        with self._lock:
            self._peers = {p.agent_id: p.model_copy(deep=True) for p in peers if p.agent_id != self.agent_id}

    def compare_to_team(self, peers: Iterable[AgentStats] | None = None) -> TeamComparison | None:
        """Compare with ``peers`` (or the stored team snapshot). None without peers."""
        with self._lock:
            team = list(peers) if peers is not None else list(self._peers.values())
            return export.compare_to_team(self._store.stats, team)

    # Convenience KPI accessors

    @property
    def performance_level(self) -> PerformanceLevel:
        with self._lock:
            return self._store.stats.performance_level

    @property
    def calls_per_hour(self) -> float:
        with self._lock:
            return self._store.stats.performance.calls_per_hour

    @property
    def avg_handle_time(self) -> float:
        with self._lock:
            return self._store.stats.performance.avg_handle_time

    @property
    def service_level(self) -> float:
        with self._lock:
            return self._store.stats.performance.service_level

    @property
    def occupancy(self) -> float:
        with self._lock:
            return self._store.stats.performance.occupancy

    @property
    def utilization(self) -> float:
        with self._lock:
            return self._store.stats.performance.utilization

    @property
    def formatted_talk_time(self) -> str:
        with self._lock:
            return format_duration(self._store.stats.total_talk_time)

    @property
    def formatted_login_time(self) -> str:
        with self._lock:
            return format_duration(self._store.stats.total_login_time)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> StatsSnapshot:
        """Everything that gets persisted: this agent, known peers, and alerts."""
        with self._lock:
            stats = [self._store.snapshot(), *(p.model_copy(deep=True) for p in self._peers.values())]
            return StatsSnapshot(stats=stats, alerts=self._alerts.alerts)

    def flush(self) -> None:
        """Write any pending snapshot immediately."""
        if self._persistence is not None:
            self._persistence.flush()

    def _load_persisted(self, persistence: StatsPersistence) -> None:
        snapshot = persistence.load()
        if snapshot is None:
            return
        for agent_stats in snapshot.stats:
            if agent_stats.agent_id == self.agent_id:
                self._store.load(agent_stats)
            else:
                self._peers[agent_stats.agent_id] = agent_stats
        self._alerts.load(snapshot.alerts)
        logger.info(
            "Restored stats for %s (%d calls, %d alerts)",
            self.agent_id,
            self._store.stats.total_calls,
            len(snapshot.alerts),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _after_mutation(self, *, evaluate_alerts: bool = True) -> None:
        """Run alerting, callbacks, persistence, and gauges. Caller holds the lock."""
        if evaluate_alerts:
            self._alerts.evaluate(self._store.stats)
        self._update_gauges()
        if self.on_stats_update is not None:
            try:
                self.on_stats_update(self._store.snapshot())
            except Exception:
                logger.exception("on_stats_update callback failed for agent %s", self.agent_id)
        if self._persistence is not None:
            self._persistence.schedule_save(self.snapshot)

    def _after_alert_change(self) -> None:
        UNACKNOWLEDGED_ALERTS.labels(agent_id=self.agent_id).set(self._alerts.unacknowledged_count)
        if self._persistence is not None:
            self._persistence.schedule_save(self.snapshot)

    def _alert_raised(self, alert: StatsAlert) -> None:
        ALERTS_RAISED_TOTAL.labels(metric=alert.metric, level=alert.level).inc()
        if self.on_alert is not None:
            try:
                self.on_alert(alert)
            except Exception:
                logger.exception("on_alert callback failed for alert %s", alert.id)

    def _update_gauges(self) -> None:
        performance = self._store.stats.performance
        for kpi in GAUGED_KPIS:
            AGENT_KPI.labels(agent_id=self.agent_id, kpi=kpi).set(float(getattr(performance, kpi)))
        UNACKNOWLEDGED_ALERTS.labels(agent_id=self.agent_id).set(self._alerts.unacknowledged_count)

    def _report_error(self, message: str) -> None:
        self.error = message
        if self.on_error is not None:
            try:
                self.on_error(message)
            except Exception:
                logger.exception("on_error callback failed")
