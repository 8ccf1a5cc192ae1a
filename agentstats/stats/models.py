"""Pydantic models for agent statistics, call records, thresholds, and alerts.

Every model round-trips through ``model_dump_json`` / ``model_validate_json``:
datetimes serialize as ISO 8601 strings and are re-parsed on load.
"""

import secrets
import string
import time
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

CallDirection = Literal["inbound", "outbound", "internal"]
CallDisposition = Literal["answered", "missed", "transferred", "voicemail"]
AgentStatsPeriod = Literal["today", "week", "month", "custom"]
PerformanceLevel = Literal["excellent", "good", "average", "needs_improvement", "critical"]
AlertLevel = Literal["warning", "critical"]
MetricName = Literal[
    "calls_per_hour",
    "avg_handle_time",
    "avg_talk_time",
    "avg_wrap_time",
    "avg_hold_time",
    "fcr_rate",
    "service_level",
    "occupancy",
    "utilization",
    "avg_quality_score",
    "transfer_rate",
    "hold_rate",
]

# Dispositions where the agent actually spoke to the caller
ANSWERED_DISPOSITIONS: frozenset[str] = frozenset({"answered", "transferred"})

HOURS_PER_DAY = 24

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_id() -> str:
    """Return a unique ``<epoch-ms>-<7 base36 chars>`` identifier."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(7))
    return f"{int(time.time() * 1000)}-{suffix}"


def utcnow() -> datetime:
    return datetime.now(UTC)


class CallRecord(BaseModel):
    """One completed or missed call handled by an agent."""

    call_id: str = Field(default_factory=generate_id)
    queue: str | None = None
    remote_party: str = ""
    direction: CallDirection = "inbound"
    start_time: datetime = Field(default_factory=utcnow)
    answer_time: datetime | None = None
    end_time: datetime | None = None
    wait_time: float | None = Field(default=None, ge=0)  # None = no wait-time data
    talk_time: float = Field(default=0.0, ge=0)
    hold_time: float = Field(default=0.0, ge=0)
    wrap_time: float = Field(default=0.0, ge=0)
    disposition: CallDisposition = "answered"
    transferred_to: str | None = None
    recorded: bool = False
    quality_score: float | None = None  # MOS, 1.0-5.0
    tags: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _no_talk_time_unless_answered(self) -> "CallRecord":
        if self.disposition not in ANSWERED_DISPOSITIONS:
            self.talk_time = 0.0
        return self

    @property
    def answered(self) -> bool:
        return self.disposition in ANSWERED_DISPOSITIONS

    @property
    def handle_time(self) -> float:
        return self.talk_time + self.hold_time + self.wrap_time


class HourlyStats(BaseModel):
    """Call volume for one local hour-of-day."""

    hour: int = Field(ge=0, lt=HOURS_PER_DAY)
    call_count: int = 0
    talk_time: float = 0.0
    avg_handle_time: float = 0.0


class QueueStats(BaseModel):
    """Per-queue breakdown nested under an agent's statistics."""

    queue: str
    calls_handled: int = 0
    calls_missed: int = 0
    talk_time: float = 0.0
    avg_handle_time: float = 0.0
    avg_wait_time: float = 0.0
    service_level: float = 100.0
    sl_eligible_calls: int = 0
    sl_met_calls: int = 0
    reported_calls_taken: int = 0  # CallsTaken from the last QueueMemberStatus
    login_time: float = 0.0
    available_time: float = 0.0
    paused_time: float = 0.0


class PerformanceMetrics(BaseModel):
    """Derived KPIs. Always recomputed from totals, never mutated directly."""

    calls_per_hour: float = 0.0
    avg_handle_time: float = 0.0
    avg_talk_time: float = 0.0
    avg_wrap_time: float = 0.0
    avg_hold_time: float = 0.0
    fcr_rate: float = 0.0
    service_level: float = 0.0
    occupancy: float = 0.0
    utilization: float = 0.0
    avg_quality_score: float = 0.0
    transfer_rate: float = 0.0
    hold_rate: float = 0.0


def empty_hourly_stats() -> list[HourlyStats]:
    return [HourlyStats(hour=h) for h in range(HOURS_PER_DAY)]


class AgentStats(BaseModel):
    """Running statistics for one agent over the active period."""

    agent_id: str
    interface: str = ""
    name: str = ""
    period: AgentStatsPeriod = "today"
    period_start: datetime = Field(default_factory=utcnow)
    period_end: datetime = Field(default_factory=utcnow)

    total_calls: int = 0
    inbound_calls: int = 0
    outbound_calls: int = 0
    internal_calls: int = 0
    missed_calls: int = 0
    transferred_calls: int = 0
    voicemail_calls: int = 0

    total_talk_time: float = 0.0
    total_hold_time: float = 0.0
    total_wrap_time: float = 0.0
    total_handle_time: float = 0.0
    total_login_time: float = 0.0
    total_available_time: float = 0.0
    total_paused_time: float = 0.0
    total_on_call_time: float = 0.0

    # Running helper counters so KPI recompute never rescans recent_calls
    answered_calls: int = 0
    calls_with_hold: int = 0
    sl_eligible_calls: int = 0
    sl_met_calls: int = 0
    quality_score_total: float = 0.0
    quality_score_count: int = 0

    performance: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    queue_stats: dict[str, QueueStats] = Field(default_factory=dict)
    hourly_stats: list[HourlyStats] = Field(default_factory=empty_hourly_stats)
    recent_calls: list[CallRecord] = Field(default_factory=list)
    performance_level: PerformanceLevel = "average"
    last_updated: datetime = Field(default_factory=utcnow)

    @field_validator("hourly_stats")
    @classmethod
    def _exactly_24_buckets(cls, value: list[HourlyStats]) -> list[HourlyStats]:
        if len(value) == HOURS_PER_DAY and all(b.hour == i for i, b in enumerate(value)):
            return value
        by_hour = {b.hour: b for b in value}
        return [by_hour.get(h, HourlyStats(hour=h)) for h in range(HOURS_PER_DAY)]


class StatsThreshold(BaseModel):
    """Alert threshold definition for one KPI."""

    metric: MetricName
    warning_threshold: float
    critical_threshold: float
    higher_is_better: bool


class StatsAlert(BaseModel):
    """An alert raised when a KPI crosses one of its thresholds."""

    id: str = Field(default_factory=generate_id)
    agent_id: str
    metric: MetricName
    level: AlertLevel
    current_value: float
    threshold_value: float
    warning_threshold: float
    critical_threshold: float
    higher_is_better: bool
    message: str
    timestamp: datetime = Field(default_factory=utcnow)
    acknowledged: bool = False


class TeamComparison(BaseModel):
    """An agent's KPIs side by side with the team average."""

    agent: AgentStats
    team_average: PerformanceMetrics
    percentile_rank: float
    strengths: list[str] = Field(default_factory=list)
    improvement_areas: list[str] = Field(default_factory=list)


class CallHistoryFilter(BaseModel):
    """Optional filters for call history queries."""

    direction: CallDirection | None = None
    disposition: CallDisposition | None = None
    queue: str | None = None
    since: datetime | None = None
