"""Debounced snapshot persistence for agent statistics and alerts.

A snapshot is ``{"stats": [AgentStats...], "alerts": [StatsAlert...]}``
serialized as JSON under a single key. Writes are scheduled on an APScheduler
``BackgroundScheduler`` as a one-shot date job with a fixed id, so every new
schedule replaces the pending one and only the last write of a burst runs.

Failures never propagate: a failed write is logged and counted, and a
missing or corrupt snapshot on load means "start empty".
"""

import contextlib
import logging
import threading
import time
from collections.abc import Callable
from datetime import datetime, timedelta

from apscheduler.jobstores.base import JobLookupError  # type: ignore[import-untyped]
from apscheduler.schedulers.background import BackgroundScheduler  # type: ignore[import-untyped]
from pydantic import BaseModel, Field, ValidationError

from agentstats.memory.kv import KeyValueStore
from agentstats.observability.metrics import PERSISTENCE_WRITE_DURATION, PERSISTENCE_WRITES_TOTAL
from agentstats.stats.models import AgentStats, StatsAlert

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 1.0


class StatsSnapshot(BaseModel):
    """Everything persisted for a tracker."""

    stats: list[AgentStats] = Field(default_factory=list)
    alerts: list[StatsAlert] = Field(default_factory=list)


SnapshotFn = Callable[[], StatsSnapshot]


class StatsPersistence:
    """Loads and (debounced) stores snapshots under one key."""

    def __init__(
        self,
        store: KeyValueStore,
        key: str,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        if not key:
            msg = "Persistence storage key must not be empty"
            raise ValueError(msg)
        self.store = store
        self.key = key
        self.debounce_seconds = debounce_seconds
        self._lock = threading.Lock()
        self._pending: SnapshotFn | None = None
        self._scheduler: BackgroundScheduler | None = None
        self._job_id = f"persist:{key}"

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def load(self) -> StatsSnapshot | None:
        """Read the stored snapshot. Returns None when absent or unreadable."""
        try:
            raw = self.store.get(self.key)
        except Exception:
            logger.warning("Failed to read stats snapshot '%s'", self.key, exc_info=True)
            return None
        if raw is None:
            logger.debug("No stats snapshot stored under '%s'", self.key)
            return None
        try:
            return StatsSnapshot.model_validate_json(raw)
        except (ValidationError, ValueError):
            logger.warning("Ignoring corrupt stats snapshot '%s'", self.key, exc_info=True)
            return None

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def save(self, snapshot: StatsSnapshot) -> bool:
        """Serialize and store a snapshot now. Never raises; returns success."""
        start = time.monotonic()
        try:
            payload = snapshot.model_dump_json().encode("utf-8")
            self.store.put(self.key, payload)
        except Exception:
            PERSISTENCE_WRITES_TOTAL.labels(status="error").inc()
            logger.exception("Failed to persist stats snapshot '%s'", self.key)
            return False
        finally:
            PERSISTENCE_WRITE_DURATION.observe(time.monotonic() - start)
        PERSISTENCE_WRITES_TOTAL.labels(status="success").inc()
        return True

    def schedule_save(self, snapshot_fn: SnapshotFn) -> None:
        """Write ``snapshot_fn()`` once the debounce window passes quietly.

        The snapshot is taken when the write runs, not when it is scheduled,
        so the latest state always wins. With no debounce the write is
        synchronous.
        """
        if self.debounce_seconds <= 0:
            self.save(snapshot_fn())
            return

        with self._lock:
            self._pending = snapshot_fn
            scheduler = self._ensure_scheduler()
            scheduler.add_job(
                self._write_pending,
                trigger="date",
                run_date=datetime.now() + timedelta(seconds=self.debounce_seconds),
                id=self._job_id,
                name=f"Persist stats snapshot {self.key}",
                replace_existing=True,
                misfire_grace_time=None,
            )

    def flush(self) -> None:
        """Cancel any pending debounced write and perform it immediately."""
        with self._lock:
            if self._scheduler is not None:
                with contextlib.suppress(JobLookupError):
                    self._scheduler.remove_job(self._job_id)
        self._write_pending()

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def shutdown(self) -> None:
        """Flush pending work and stop the background scheduler."""
        self.flush()
        with self._lock:
            if self._scheduler is not None:
                with contextlib.suppress(Exception):
                    self._scheduler.shutdown(wait=False)
                self._scheduler = None

    def _write_pending(self) -> None:
        with self._lock:
            snapshot_fn = self._pending
            self._pending = None
        if snapshot_fn is None:
            return
        try:
            snapshot = snapshot_fn()
        except Exception:
            PERSISTENCE_WRITES_TOTAL.labels(status="error").inc()
            logger.exception("Failed to build stats snapshot '%s'", self.key)
            return
        self.save(snapshot)

    def _ensure_scheduler(self) -> BackgroundScheduler:
        if self._scheduler is None:
            self._scheduler = BackgroundScheduler(daemon=True)
            self._scheduler.start()
            logger.debug("Persistence scheduler started for '%s'", self.key)
        return self._scheduler
