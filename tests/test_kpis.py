"""Unit tests for KPI computation and performance grading."""

import pytest

from agentstats.stats.kpis import (
    GradingPolicy,
    compute_performance,
    format_duration,
    grade,
    handle_time_penalty,
    overall_score,
    percent,
    ratio,
    recompute,
)
from agentstats.stats.models import AgentStats, PerformanceMetrics


def _stats(**fields: float) -> AgentStats:
    return AgentStats(agent_id="1001", **fields)


class TestRatios:
    def test_zero_denominator_is_zero(self) -> None:
        assert ratio(5, 0) == 0.0
        assert percent(5, 0) == 0.0

    def test_percent(self) -> None:
        assert percent(1, 4) == 25.0


class TestComputePerformance:
    def test_empty_stats_all_zero(self) -> None:
        perf = compute_performance(_stats())
        assert perf == PerformanceMetrics()

    def test_averages_use_answered_calls(self) -> None:
        perf = compute_performance(
            _stats(
                total_calls=4,
                answered_calls=2,
                missed_calls=2,
                total_talk_time=200,
                total_hold_time=20,
                total_wrap_time=40,
            )
        )
        assert perf.avg_talk_time == 100
        assert perf.avg_hold_time == 10
        assert perf.avg_wrap_time == 20
        assert perf.avg_handle_time == 130

    def test_service_level_over_eligible_calls(self) -> None:
        perf = compute_performance(_stats(total_calls=5, sl_eligible_calls=4, sl_met_calls=3))
        assert perf.service_level == 75.0

    def test_service_level_zero_without_eligible_calls(self) -> None:
        perf = compute_performance(_stats(total_calls=3))
        assert perf.service_level == 0.0

    def test_login_based_rates(self) -> None:
        perf = compute_performance(
            _stats(
                total_calls=6,
                total_login_time=7200,
                total_talk_time=1800,
                total_wrap_time=360,
            )
        )
        assert perf.calls_per_hour == 3.0
        assert perf.occupancy == 25.0
        assert perf.utilization == 30.0

    def test_no_login_time_means_zero_rates(self) -> None:
        perf = compute_performance(_stats(total_calls=6, total_talk_time=600))
        assert perf.calls_per_hour == 0.0
        assert perf.occupancy == 0.0
        assert perf.utilization == 0.0

    def test_transfer_fcr_and_hold_rates(self) -> None:
        perf = compute_performance(_stats(total_calls=10, transferred_calls=2, calls_with_hold=5))
        assert perf.transfer_rate == 20.0
        assert perf.fcr_rate == 80.0
        assert perf.hold_rate == 50.0

    def test_fcr_zero_without_calls(self) -> None:
        assert compute_performance(_stats()).fcr_rate == 0.0

    def test_quality_score_mean(self) -> None:
        perf = compute_performance(_stats(total_calls=2, quality_score_total=8.5, quality_score_count=2))
        assert perf.avg_quality_score == 4.25

    def test_does_not_mutate_input(self) -> None:
        stats = _stats(total_calls=2, answered_calls=2, total_talk_time=100)
        before = stats.model_dump()
        compute_performance(stats)
        assert stats.model_dump() == before


class TestHandleTimePenalty:
    def test_at_or_below_target_is_zero(self) -> None:
        assert handle_time_penalty(0) == 0.0
        assert handle_time_penalty(180) == 0.0

    def test_linear_between_target_and_max(self) -> None:
        assert handle_time_penalty(390) == pytest.approx(50.0)

    def test_capped_at_100(self) -> None:
        assert handle_time_penalty(5000) == 100.0

    def test_degenerate_span(self) -> None:
        policy = GradingPolicy(target_handle_time=600, max_handle_time=600)
        assert handle_time_penalty(500, policy) == 0.0
        assert handle_time_penalty(700, policy) == 100.0


class TestGrading:
    @pytest.mark.parametrize(
        ("score", "level"),
        [
            (100, "excellent"),
            (90, "excellent"),
            (89.9, "good"),
            (75, "good"),
            (74.9, "average"),
            (60, "average"),
            (59.9, "needs_improvement"),
            (40, "needs_improvement"),
            (39.9, "critical"),
            (0, "critical"),
        ],
    )
    def test_bands(self, score: float, level: str) -> None:
        assert grade(score) == level

    def test_monotonic(self) -> None:
        order = ["critical", "needs_improvement", "average", "good", "excellent"]
        ranks = [order.index(grade(s)) for s in range(0, 101)]
        assert ranks == sorted(ranks)

    def test_overall_score_equal_weights(self) -> None:
        metrics = PerformanceMetrics(service_level=90, occupancy=60, avg_handle_time=180)
        assert overall_score(metrics) == pytest.approx((90 + 60 + 100) / 3)

    def test_occupancy_capped_at_100(self) -> None:
        metrics = PerformanceMetrics(service_level=100, occupancy=250, avg_handle_time=0)
        assert overall_score(metrics) == pytest.approx(100.0)

    def test_custom_weights(self) -> None:
        policy = GradingPolicy(service_level_weight=1, occupancy_weight=0, handle_time_weight=0)
        metrics = PerformanceMetrics(service_level=42, occupancy=90, avg_handle_time=1000)
        assert overall_score(metrics, policy) == pytest.approx(42.0)

    def test_all_zero_weights_score_zero(self) -> None:
        policy = GradingPolicy(service_level_weight=0, occupancy_weight=0, handle_time_weight=0)
        assert overall_score(PerformanceMetrics(service_level=100), policy) == 0.0

    def test_recompute_sets_level(self) -> None:
        stats = _stats(
            total_calls=10,
            answered_calls=10,
            sl_eligible_calls=10,
            sl_met_calls=10,
            total_talk_time=1200,
            total_login_time=1500,
        )
        recompute(stats)
        assert stats.performance.service_level == 100.0
        assert stats.performance.occupancy == 80.0
        # (100 + 80 + 100) / 3 = 93.3
        assert stats.performance_level == "excellent"


class TestFormatDuration:
    def test_formats_hh_mm_ss(self) -> None:
        assert format_duration(3725) == "01:02:05"

    def test_zero_and_negative(self) -> None:
        assert format_duration(0) == "00:00:00"
        assert format_duration(-5) == "00:00:00"

    def test_truncates_fractions(self) -> None:
        assert format_duration(59.9) == "00:00:59"
