"""Derived KPI computation and performance grading.

Everything here is a pure function of an ``AgentStats`` snapshot's running
totals. Nothing mutates its input and nothing raises: every ratio returns 0
when its denominator is 0.
"""

from pydantic import BaseModel, Field

from agentstats.stats.models import AgentStats, PerformanceLevel, PerformanceMetrics

SECONDS_PER_HOUR = 3600


class GradingPolicy(BaseModel):
    """Weights and handle-time bounds used to compute the overall score.

    The overall score is a weighted mean of service level, occupancy (capped
    at 100) and ``100 - handle_time_penalty``. The penalty grows linearly from
    0 at ``target_handle_time`` to 100 at ``max_handle_time``.
    """

    service_level_weight: float = Field(default=1.0, ge=0)
    occupancy_weight: float = Field(default=1.0, ge=0)
    handle_time_weight: float = Field(default=1.0, ge=0)
    target_handle_time: float = Field(default=180.0, ge=0)
    max_handle_time: float = Field(default=600.0, gt=0)


DEFAULT_GRADING_POLICY = GradingPolicy()

# (lower bound, level), checked in order, first match wins
GRADE_BANDS: tuple[tuple[float, PerformanceLevel], ...] = (
    (90.0, "excellent"),
    (75.0, "good"),
    (60.0, "average"),
    (40.0, "needs_improvement"),
)


def ratio(numerator: float, denominator: float) -> float:
    """Return numerator / denominator, or 0 when the denominator is 0."""
    if not denominator:
        return 0.0
    return numerator / denominator


def percent(numerator: float, denominator: float) -> float:
    return ratio(numerator, denominator) * 100


def compute_performance(stats: AgentStats) -> PerformanceMetrics:
    """Compute every KPI from the running totals in O(1)."""
    login_hours = stats.total_login_time / SECONDS_PER_HOUR
    answered = stats.answered_calls

    avg_talk = ratio(stats.total_talk_time, answered)
    avg_hold = ratio(stats.total_hold_time, answered)
    avg_wrap = ratio(stats.total_wrap_time, answered)

    return PerformanceMetrics(
        calls_per_hour=ratio(stats.total_calls, login_hours),
        avg_handle_time=avg_talk + avg_hold + avg_wrap,
        avg_talk_time=avg_talk,
        avg_wrap_time=avg_wrap,
        avg_hold_time=avg_hold,
        fcr_rate=percent(stats.total_calls - stats.transferred_calls, stats.total_calls),
        service_level=percent(stats.sl_met_calls, stats.sl_eligible_calls),
        occupancy=percent(stats.total_talk_time, stats.total_login_time),
        utilization=percent(stats.total_talk_time + stats.total_wrap_time, stats.total_login_time),
        avg_quality_score=ratio(stats.quality_score_total, stats.quality_score_count),
        transfer_rate=percent(stats.transferred_calls, stats.total_calls),
        hold_rate=percent(stats.calls_with_hold, stats.total_calls),
    )


def handle_time_penalty(avg_handle_time: float, policy: GradingPolicy = DEFAULT_GRADING_POLICY) -> float:
    """Map average handle time onto a 0-100 penalty (0 at or below target)."""
    span = policy.max_handle_time - policy.target_handle_time
    if span <= 0:
        return 0.0 if avg_handle_time <= policy.target_handle_time else 100.0
    raw = (avg_handle_time - policy.target_handle_time) / span * 100
    return max(0.0, min(100.0, raw))


def overall_score(metrics: PerformanceMetrics, policy: GradingPolicy = DEFAULT_GRADING_POLICY) -> float:
    """Weighted mean of service level, capped occupancy, and handle-time score."""
    parts = (
        (metrics.service_level, policy.service_level_weight),
        (min(metrics.occupancy, 100.0), policy.occupancy_weight),
        (100.0 - handle_time_penalty(metrics.avg_handle_time, policy), policy.handle_time_weight),
    )
    total_weight = sum(weight for _, weight in parts)
    return ratio(sum(value * weight for value, weight in parts), total_weight)


def grade(score: float) -> PerformanceLevel:
    """Band an overall score into a performance level. Monotonic in ``score``."""
    for lower_bound, level in GRADE_BANDS:
        if score >= lower_bound:
            return level
    return "critical"


def recompute(stats: AgentStats, policy: GradingPolicy = DEFAULT_GRADING_POLICY) -> None:
    """Refresh ``performance`` and ``performance_level`` on a live stats object."""
    stats.performance = compute_performance(stats)
    stats.performance_level = grade(overall_score(stats.performance, policy))


def format_duration(seconds: float) -> str:
    """Format seconds as HH:MM:SS."""
    total = max(0, int(seconds))
    hours, rem = divmod(total, SECONDS_PER_HOUR)
    minutes, secs = divmod(rem, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
