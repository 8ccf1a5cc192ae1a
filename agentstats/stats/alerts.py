"""Threshold alerting over derived KPIs.

Each (agent, threshold) pair is a small state machine::

    clear -> warning -> critical -> clear

A new alert is raised only when severity escalates past the highest level
reached since the pair was last clear. Staying at, or dropping to, a lower
severity raises nothing and leaves the pair at its highest level, so a metric
swinging between warning and critical does not repeat the critical alert.
Returning to clear re-arms the pair.
"""

import logging
from collections.abc import Callable, Iterable

from agentstats.stats.models import AgentStats, AlertLevel, StatsAlert, StatsThreshold

logger = logging.getLogger(__name__)

DEFAULT_MAX_ALERT_HISTORY = 200

DEFAULT_THRESHOLDS: tuple[StatsThreshold, ...] = (
    StatsThreshold(metric="avg_handle_time", warning_threshold=300, critical_threshold=600, higher_is_better=False),
    StatsThreshold(metric="service_level", warning_threshold=80, critical_threshold=60, higher_is_better=True),
    StatsThreshold(metric="occupancy", warning_threshold=30, critical_threshold=20, higher_is_better=True),
    StatsThreshold(metric="calls_per_hour", warning_threshold=5, critical_threshold=2, higher_is_better=True),
)

_SEVERITY_RANK: dict[str | None, int] = {None: 0, "warning": 1, "critical": 2}

_StateKey = tuple[str, str, float, float]


def breach_level(value: float, threshold: StatsThreshold) -> AlertLevel | None:
    """Return the severity ``value`` breaches, or None when it is within bounds."""
    if threshold.higher_is_better:
        if value < threshold.critical_threshold:
            return "critical"
        if value < threshold.warning_threshold:
            return "warning"
        return None
    if value > threshold.critical_threshold:
        return "critical"
    if value > threshold.warning_threshold:
        return "warning"
    return None


def _state_key(agent_id: str, threshold: StatsThreshold) -> _StateKey:
    return (agent_id, threshold.metric, threshold.warning_threshold, threshold.critical_threshold)


class AlertEngine:
    """Evaluates thresholds after each mutation and keeps the alert list."""

    def __init__(
        self,
        thresholds: Iterable[StatsThreshold] | None = None,
        *,
        max_history: int = DEFAULT_MAX_ALERT_HISTORY,
        on_alert: Callable[[StatsAlert], None] | None = None,
    ) -> None:
        self.thresholds: tuple[StatsThreshold, ...] = (
            DEFAULT_THRESHOLDS if thresholds is None else tuple(thresholds)
        )
        self.max_history = max(1, max_history)
        self.on_alert = on_alert
        self._alerts: list[StatsAlert] = []
        self._state: dict[_StateKey, AlertLevel | None] = {}

    @property
    def alerts(self) -> list[StatsAlert]:
        """Alert history, oldest first (copies)."""
        return [a.model_copy() for a in self._alerts]

    @property
    def unacknowledged_count(self) -> int:
        return sum(1 for a in self._alerts if not a.acknowledged)

    def evaluate(self, stats: AgentStats) -> list[StatsAlert]:
        """Check every threshold against current KPIs. Returns newly raised alerts.

        An agent with no calls in the period is not evaluated.
        """
        if stats.total_calls == 0:
            return []

        raised: list[StatsAlert] = []
        for threshold in self.thresholds:
            value = float(getattr(stats.performance, threshold.metric))
            level = breach_level(value, threshold)
            key = _state_key(stats.agent_id, threshold)
            if level is None:
                self._state[key] = None
                continue
            # the pair holds the highest level reached until it clears
            if _SEVERITY_RANK[level] <= _SEVERITY_RANK[self._state.get(key)]:
                continue
            self._state[key] = level
            alert = self._raise(stats.agent_id, threshold, level, value)
            raised.append(alert)
        return raised

    def acknowledge(self, alert_id: str) -> bool:
        """Mark one alert acknowledged. Returns False for unknown ids."""
        for alert in self._alerts:
            if alert.id == alert_id:
                alert.acknowledged = True
                return True
        return False

    def acknowledge_all(self) -> int:
        """Acknowledge every open alert. Returns how many were open."""
        count = 0
        for alert in self._alerts:
            if not alert.acknowledged:
                alert.acknowledged = True
                count += 1
        return count

    def reset_state(self, agent_id: str | None = None) -> None:
        """Re-arm breach tracking (e.g. on a period change). Alerts are kept."""
        if agent_id is None:
            self._state.clear()
            return
        for key in [k for k in self._state if k[0] == agent_id]:
            del self._state[key]

    def load(self, alerts: Iterable[StatsAlert]) -> None:
        """Restore persisted alerts and rebuild breach state from the open ones."""
        self._alerts = [a.model_copy() for a in alerts][-self.max_history :]
        self._state.clear()
        for alert in self._alerts:
            if alert.acknowledged:
                continue
            key = (alert.agent_id, alert.metric, alert.warning_threshold, alert.critical_threshold)
            if _SEVERITY_RANK[alert.level] > _SEVERITY_RANK[self._state.get(key)]:
                self._state[key] = alert.level

    def _raise(self, agent_id: str, threshold: StatsThreshold, level: AlertLevel, value: float) -> StatsAlert:
        direction = "below" if threshold.higher_is_better else "above"
        crossed = threshold.critical_threshold if level == "critical" else threshold.warning_threshold
        alert = StatsAlert(
            agent_id=agent_id,
            metric=threshold.metric,
            level=level,
            current_value=value,
            threshold_value=crossed,
            warning_threshold=threshold.warning_threshold,
            critical_threshold=threshold.critical_threshold,
            higher_is_better=threshold.higher_is_better,
            message=f"{threshold.metric} is {direction} {level} threshold: {value:.1f}",
        )
        self._alerts.append(alert)
        if len(self._alerts) > self.max_history:
            del self._alerts[: len(self._alerts) - self.max_history]
        logger.info("Alert raised for agent %s: %s", agent_id, alert.message)

        if self.on_alert is not None:
            try:
                self.on_alert(alert.model_copy())
            except Exception:
                logger.exception("on_alert callback failed for alert %s", alert.id)
        return alert
