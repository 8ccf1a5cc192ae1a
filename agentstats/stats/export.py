"""Read-only views and exports over an ``AgentStats`` snapshot.

All functions here take a snapshot and return new objects; none of them
mutate the statistics they are given.
"""

import csv
import io
from collections.abc import Iterable
from datetime import datetime

from agentstats.stats.models import (
    AgentStats,
    CallHistoryFilter,
    CallRecord,
    HourlyStats,
    PerformanceMetrics,
    QueueStats,
    TeamComparison,
    empty_hourly_stats,
)

CSV_HEADERS = (
    "Call ID",
    "Queue",
    "Remote Party",
    "Direction",
    "Start Time",
    "End Time",
    "Wait Time",
    "Talk Time",
    "Hold Time",
    "Wrap Time",
    "Disposition",
)

# Leading characters that make spreadsheet apps evaluate a cell as a formula
FORMULA_PREFIXES = ("=", "+", "-", "@")

# (label, metric, higher_is_better) for team comparison strengths/weaknesses
_COMPARED_KPIS: tuple[tuple[str, str, bool], ...] = (
    ("Service Level", "service_level", True),
    ("Handle Time", "avg_handle_time", False),
    ("Calls Per Hour", "calls_per_hour", True),
    ("Occupancy", "occupancy", True),
)
IMPROVEMENT_MARGIN = 0.1


# ---------------------------------------------------------------------------
# Breakdowns
# ---------------------------------------------------------------------------


def get_queue_stats(stats: AgentStats, queue: str | None = None) -> list[QueueStats]:
    """Queue breakdown entries, optionally narrowed to a single queue."""
    if queue is not None:
        entry = stats.queue_stats.get(queue)
        return [entry.model_copy()] if entry is not None else []
    return [q.model_copy() for q in stats.queue_stats.values()]


def get_hourly_breakdown(stats: AgentStats | None) -> list[HourlyStats]:
    """Exactly 24 hourly buckets, zero-filled where there was no activity."""
    if stats is None:
        return empty_hourly_stats()
    return [b.model_copy() for b in stats.hourly_stats]


def peak_hours(stats: AgentStats, limit: int | None = 3) -> list[int]:
    """Busiest hours by call count (ties go to the earlier hour)."""
    active = [b for b in stats.hourly_stats if b.call_count > 0]
    active.sort(key=lambda b: (-b.call_count, b.hour))
    hours = [b.hour for b in active]
    return hours if limit is None else hours[:limit]


def top_queues(stats: AgentStats, limit: int | None = 5) -> list[QueueStats]:
    """Queues ordered by calls handled, most first."""
    ranked = sorted(stats.queue_stats.values(), key=lambda q: q.calls_handled, reverse=True)
    if limit is not None:
        ranked = ranked[:limit]
    return [q.model_copy() for q in ranked]


# ---------------------------------------------------------------------------
# Team comparison
# ---------------------------------------------------------------------------


def team_average(members: list[AgentStats]) -> PerformanceMetrics:
    """Arithmetic mean of every KPI across ``members``."""
    if not members:
        return PerformanceMetrics()
    averaged = {
        field: sum(float(getattr(m.performance, field)) for m in members) / len(members)
        for field in PerformanceMetrics.model_fields
    }
    return PerformanceMetrics(**averaged)


def compare_to_team(agent: AgentStats, peers: Iterable[AgentStats]) -> TeamComparison | None:
    """Compare an agent's KPIs with the team (agent plus peers).

    Returns None when there are no peers to compare against.
    """
    others = [p for p in peers if p.agent_id != agent.agent_id]
    if not others:
        return None

    members = [agent, *others]
    average = team_average(members)

    ranked = sorted(members, key=lambda s: s.performance.service_level * s.total_calls, reverse=True)
    rank = next(i for i, s in enumerate(ranked) if s.agent_id == agent.agent_id)
    percentile_rank = (len(members) - rank) / len(members) * 100

    strengths: list[str] = []
    improvement_areas: list[str] = []
    for label, metric, higher_is_better in _COMPARED_KPIS:
        mine = float(getattr(agent.performance, metric))
        team = float(getattr(average, metric))
        if higher_is_better:
            if mine > team:
                strengths.append(label)
            elif mine < team * (1 - IMPROVEMENT_MARGIN):
                improvement_areas.append(label)
        elif mine < team:
            strengths.append(label)
        elif mine > team * (1 + IMPROVEMENT_MARGIN):
            improvement_areas.append(label)

    return TeamComparison(
        agent=agent.model_copy(deep=True),
        team_average=average,
        percentile_rank=percentile_rank,
        strengths=strengths,
        improvement_areas=improvement_areas,
    )


# ---------------------------------------------------------------------------
# Call history
# ---------------------------------------------------------------------------


def _as_aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.astimezone()


def _matches(call: CallRecord, call_filter: CallHistoryFilter) -> bool:
    if call_filter.direction is not None and call.direction != call_filter.direction:
        return False
    if call_filter.disposition is not None and call.disposition != call_filter.disposition:
        return False
    if call_filter.queue is not None and call.queue != call_filter.queue:
        return False
    if call_filter.since is not None and _as_aware(call.start_time) < _as_aware(call_filter.since):
        return False
    return True


def get_call_history(
    stats: AgentStats,
    call_filter: CallHistoryFilter | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> list[CallRecord]:
    """Recent calls, newest first, filtered and paginated."""
    calls = stats.recent_calls
    if call_filter is not None:
        calls = [c for c in calls if _matches(c, call_filter)]
    start = max(0, offset)
    end = None if limit is None else start + max(0, limit)
    return [c.model_copy() for c in calls[start:end]]


# ---------------------------------------------------------------------------
# Exports
# ---------------------------------------------------------------------------


def sanitize_csv_cell(value: object) -> str:
    """Render a cell as text, neutralising spreadsheet formula injection."""
    text = "" if value is None else str(value)
    # line breaks would let a later line of the cell start with a formula
    text = text.replace("\r\n", " ").replace("\r", " ").replace("\n", " ")
    if text.startswith(FORMULA_PREFIXES):
        return "'" + text
    return text


def _csv_row(call: CallRecord) -> list[str]:
    values: list[object] = [
        call.call_id,
        call.queue or "",
        call.remote_party,
        call.direction,
        call.start_time.isoformat(),
        call.end_time.isoformat() if call.end_time else "",
        "" if call.wait_time is None else call.wait_time,
        call.talk_time,
        call.hold_time,
        call.wrap_time,
        call.disposition,
    ]
    return [sanitize_csv_cell(v) for v in values]


def export_csv(stats: AgentStats) -> str:
    """Recent calls as CSV: a header row, then one row per call (newest first)."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for call in stats.recent_calls:
        writer.writerow(_csv_row(call))
    return buffer.getvalue()


def export_json(stats: AgentStats) -> str:
    """Structural JSON dump of the agent's statistics."""
    return stats.model_dump_json(indent=2)
