"""APScheduler integration for the periodic tracker refresh.

Uses AsyncIOScheduler with an IntervalTrigger so ``AgentStatsTracker.refresh``
runs on the host's event loop. No-ops if the interval is zero or the tracker
has no upstream client to query.
"""

import contextlib
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]

from agentstats.tracker import AgentStatsTracker

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


def start_refresh_scheduler(tracker: AgentStatsTracker, interval_seconds: int) -> None:
    """Refresh ``tracker`` every ``interval_seconds`` until stopped."""
    global _scheduler  # noqa: PLW0603

    if interval_seconds <= 0:
        logger.info("Stats refresh disabled (REFRESH_INTERVAL_SECONDS=%s)", interval_seconds)
        return
    if tracker.event_source is None:
        logger.info("Stats refresh disabled (no upstream client for agent %s)", tracker.agent_id)
        return

    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        tracker.refresh,
        trigger=IntervalTrigger(seconds=interval_seconds),
        id=f"refresh:{tracker.agent_id}",
        name=f"Refresh agent stats {tracker.agent_id}",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    _scheduler.start()
    logger.info("Stats refresh scheduled every %ds for agent %s", interval_seconds, tracker.agent_id)


def stop_refresh_scheduler() -> None:
    """Shut down the scheduler if it is running."""
    global _scheduler  # noqa: PLW0603

    if _scheduler is not None:
        with contextlib.suppress(Exception):
            _scheduler.shutdown(wait=False)
        logger.info("Stats refresh scheduler stopped")
        _scheduler = None


def is_running() -> bool:
    return _scheduler is not None
