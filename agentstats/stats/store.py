"""Per-agent aggregation store: running totals, hourly and queue breakdowns.

``AgentStatsStore`` owns one mutable ``AgentStats`` and updates it in O(1)
per call. Recent calls are a bounded newest-first list backed by an id index,
so duplicate detection and wrap-time lookups never scan history. Derived KPIs
are recomputed from the totals after every mutation (see ``kpis.recompute``).

The store is not thread-safe on its own; ``AgentStatsTracker`` serializes
access to it.
"""

import logging
from datetime import datetime, timedelta

from agentstats.stats.kpis import DEFAULT_GRADING_POLICY, GradingPolicy, percent, recompute
from agentstats.stats.models import (
    AgentStats,
    AgentStatsPeriod,
    CallRecord,
    QueueStats,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RECENT_CALLS = 50
DEFAULT_SERVICE_LEVEL_THRESHOLD = 20.0


def period_bounds(
    period: AgentStatsPeriod,
    start: datetime | None = None,
    end: datetime | None = None,
    now: datetime | None = None,
) -> tuple[datetime, datetime]:
    """Return the (start, end) boundaries of a statistics period in local time.

    ``week`` starts on Sunday. ``custom`` uses the supplied timestamps as-is,
    falling back to today's bounds for whichever one is missing.
    """
    current = (now or datetime.now()).astimezone()
    today = current.replace(hour=0, minute=0, second=0, microsecond=0)
    tomorrow = today + timedelta(days=1)

    if period == "week":
        days_since_sunday = (today.weekday() + 1) % 7
        week_start = today - timedelta(days=days_since_sunday)
        return week_start, week_start + timedelta(days=7)
    if period == "month":
        month_start = today.replace(day=1)
        if month_start.month == 12:
            month_end = month_start.replace(year=month_start.year + 1, month=1)
        else:
            month_end = month_start.replace(month=month_start.month + 1)
        return month_start, month_end
    if period == "custom":
        return start or today, end or tomorrow
    return today, tomorrow


def local_hour(moment: datetime) -> int:
    """Hour-of-day in local time. Naive datetimes are taken as local already."""
    if moment.tzinfo is None:
        return moment.hour
    return moment.astimezone().hour


class AgentStatsStore:
    """Running statistics for one agent over the active period."""

    def __init__(
        self,
        agent_id: str,
        interface: str = "",
        name: str = "",
        *,
        period: AgentStatsPeriod = "today",
        period_start: datetime | None = None,
        period_end: datetime | None = None,
        max_recent_calls: int = DEFAULT_MAX_RECENT_CALLS,
        service_level_threshold: float = DEFAULT_SERVICE_LEVEL_THRESHOLD,
        grading_policy: GradingPolicy = DEFAULT_GRADING_POLICY,
    ) -> None:
        if max_recent_calls < 1:
            msg = "max_recent_calls must be at least 1"
            raise ValueError(msg)
        self.max_recent_calls = max_recent_calls
        self.service_level_threshold = service_level_threshold
        self.grading_policy = grading_policy

        start, end = period_bounds(period, period_start, period_end)
        self._stats = AgentStats(
            agent_id=agent_id,
            interface=interface,
            name=name or agent_id,
            period=period,
            period_start=start,
            period_end=end,
        )
        self._calls_by_id: dict[str, CallRecord] = {}
        recompute(self._stats, self.grading_policy)

    @property
    def stats(self) -> AgentStats:
        """The live statistics object. Callers must not mutate it."""
        return self._stats

    def snapshot(self) -> AgentStats:
        """Deep copy of the current statistics, safe to hand to other threads."""
        return self._stats.model_copy(deep=True)

    def load(self, stats: AgentStats) -> None:
        """Replace state with previously persisted statistics."""
        self._stats = stats.model_copy(deep=True)
        del self._stats.recent_calls[self.max_recent_calls :]
        self._calls_by_id = {c.call_id: c for c in self._stats.recent_calls}
        recompute(self._stats, self.grading_policy)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def record_call(self, record: CallRecord) -> bool:
        """Fold one call into the running totals.

        Returns False (and changes nothing) when a call with the same id is
        already among the recent calls.
        """
        stats = self._stats
        if record.call_id in self._calls_by_id:
            logger.debug("Ignoring duplicate call %s for agent %s", record.call_id, stats.agent_id)
            return False

        self._push_recent(record)

        stats.total_calls += 1
        if record.direction == "inbound":
            stats.inbound_calls += 1
        elif record.direction == "outbound":
            stats.outbound_calls += 1
        else:
            stats.internal_calls += 1

        if record.disposition == "missed":
            stats.missed_calls += 1
        elif record.disposition == "transferred":
            stats.transferred_calls += 1
        elif record.disposition == "voicemail":
            stats.voicemail_calls += 1

        stats.total_talk_time += record.talk_time
        stats.total_hold_time += record.hold_time
        stats.total_wrap_time += record.wrap_time
        stats.total_handle_time += record.handle_time

        if record.answered:
            stats.answered_calls += 1
        if record.hold_time > 0:
            stats.calls_with_hold += 1
        if record.wait_time is not None:
            stats.sl_eligible_calls += 1
            if record.answered and record.wait_time <= self.service_level_threshold:
                stats.sl_met_calls += 1
        if record.quality_score is not None:
            stats.quality_score_total += record.quality_score
            stats.quality_score_count += 1

        self._update_hourly(record)
        self._update_queue(record)
        self._touch()
        return True

    def update_wrap_time(self, call_id: str, seconds: float) -> bool:
        """Replace a recent call's wrap time, offsetting totals by the delta.

        Returns False when the call is not among the recent calls.
        """
        record = self._calls_by_id.get(call_id)
        if record is None:
            return False

        seconds = max(0.0, float(seconds))
        delta = seconds - record.wrap_time
        record.wrap_time = seconds

        stats = self._stats
        stats.total_wrap_time += delta
        stats.total_handle_time += delta

        bucket = stats.hourly_stats[local_hour(record.start_time)]
        if bucket.call_count:
            bucket.avg_handle_time += delta / bucket.call_count
        if record.queue and record.answered:
            queue = stats.queue_stats.get(record.queue)
            if queue is not None and queue.calls_handled:
                queue.avg_handle_time += delta / queue.calls_handled

        self._touch()
        return True

    def recompute(self) -> None:
        """Re-derive KPIs and grade from the current totals."""
        self._touch()

    def add_presence_time(
        self,
        *,
        login: float = 0.0,
        available: float = 0.0,
        paused: float = 0.0,
        on_call: float = 0.0,
    ) -> None:
        """Accumulate logged-in / available / paused / on-call seconds."""
        stats = self._stats
        stats.total_login_time += max(0.0, login)
        stats.total_available_time += max(0.0, available)
        stats.total_paused_time += max(0.0, paused)
        stats.total_on_call_time += max(0.0, on_call)
        self._touch()

    def apply_queue_member_status(
        self,
        queue: str,
        *,
        calls_taken: int,
        paused_time: float,
        name: str | None = None,
    ) -> None:
        """Record the switch's own view of a queue membership."""
        entry = self._queue_entry(queue)
        entry.reported_calls_taken = calls_taken
        entry.paused_time = paused_time
        if name:
            self._stats.name = name
        self._stats.last_updated = utcnow()

    def reset(self) -> None:
        """Zero every counter and breakdown, keeping identity and period."""
        stats = self._stats
        self._stats = AgentStats(
            agent_id=stats.agent_id,
            interface=stats.interface,
            name=stats.name,
            period=stats.period,
            period_start=stats.period_start,
            period_end=stats.period_end,
        )
        self._calls_by_id.clear()
        recompute(self._stats, self.grading_policy)

    def set_period(
        self,
        period: AgentStatsPeriod,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> None:
        """Switch to a new statistics period and start it from zero."""
        period_start, period_end = period_bounds(period, start, end)
        self._stats.period = period
        self._stats.period_start = period_start
        self._stats.period_end = period_end
        self.reset()

    def clear_history(self) -> None:
        """Drop the recent-call ring without touching any totals."""
        self._stats.recent_calls = []
        self._calls_by_id.clear()
        self._stats.last_updated = utcnow()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _push_recent(self, record: CallRecord) -> None:
        recent = self._stats.recent_calls
        recent.insert(0, record)
        self._calls_by_id[record.call_id] = record
        while len(recent) > self.max_recent_calls:
            evicted = recent.pop()
            self._calls_by_id.pop(evicted.call_id, None)

    def _update_hourly(self, record: CallRecord) -> None:
        bucket = self._stats.hourly_stats[local_hour(record.start_time)]
        bucket.call_count += 1
        bucket.talk_time += record.talk_time
        bucket.avg_handle_time += (record.handle_time - bucket.avg_handle_time) / bucket.call_count

    def _queue_entry(self, queue: str) -> QueueStats:
        entry = self._stats.queue_stats.get(queue)
        if entry is None:
            entry = QueueStats(queue=queue)
            self._stats.queue_stats[queue] = entry
        return entry

    def _update_queue(self, record: CallRecord) -> None:
        if not record.queue:
            return
        entry = self._queue_entry(record.queue)
        if record.answered:
            entry.calls_handled += 1
            entry.talk_time += record.talk_time
            entry.avg_handle_time += (record.handle_time - entry.avg_handle_time) / entry.calls_handled
            if record.wait_time is not None:
                entry.sl_eligible_calls += 1
                entry.avg_wait_time += (record.wait_time - entry.avg_wait_time) / entry.sl_eligible_calls
                if record.wait_time <= self.service_level_threshold:
                    entry.sl_met_calls += 1
                entry.service_level = percent(entry.sl_met_calls, entry.sl_eligible_calls)
        elif record.disposition == "missed":
            entry.calls_missed += 1

    def _touch(self) -> None:
        recompute(self._stats, self.grading_policy)
        self._stats.last_updated = utcnow()
