"""Periodic sync scheduling.

This module provides:
- SyncScheduler: one interval job per sync target plus at most one
  pending one-shot retry per target, on an APScheduler background thread
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from sheetsync.core.config import MIN_SYNC_INTERVAL

logger = logging.getLogger(__name__)

SyncJob = Callable[[str], None]


def _job_id(target_id: str) -> str:
    return f"sync-{target_id}"


def _retry_id(target_id: str) -> str:
    return f"retry-{target_id}"


class SyncScheduler:
    """Runs a callback for each target on its own interval.

    Jobs never overlap for the same target (max_instances=1) and missed
    runs are coalesced into one.
    """

    def __init__(self, callback: SyncJob) -> None:
        """Initialize the scheduler.

        Args:
            callback: Called with a target id when its sync is due.
        """
        self._callback = callback
        self._scheduler: BackgroundScheduler | None = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        """Start the scheduler."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler()
        self._scheduler.start()
        logger.info("Sync scheduler started")

    def stop(self) -> None:
        """Stop the scheduler, dropping every job."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Sync scheduler stopped")

    def schedule(self, target_id: str, interval_seconds: float, run_now: bool = False) -> None:
        """Create or replace the periodic job of a target.

        Args:
            target_id: Target to sync.
            interval_seconds: Period (clamped to the minimum interval).
            run_now: Fire the first run immediately instead of after one period.
        """
        scheduler = self._require()
        interval = max(interval_seconds, MIN_SYNC_INTERVAL)
        start = datetime.now().astimezone()
        next_run = start if run_now else start + timedelta(seconds=interval)

        scheduler.add_job(
            self._callback,
            trigger=IntervalTrigger(seconds=interval),
            args=(target_id,),
            id=_job_id(target_id),
            name=f"Sync {target_id}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=next_run,
        )
        logger.debug("Scheduled %s every %.0fs", target_id, interval)

    def reschedule(self, target_id: str, interval_seconds: float) -> None:
        """Apply a new interval to an existing job (or create it)."""
        self.schedule(target_id, interval_seconds)

    def schedule_retry(self, target_id: str, delay_seconds: float) -> None:
        """Run one extra sync after a delay.

        A later call replaces the pending retry, so retries never stack.
        """
        scheduler = self._require()
        run_at = datetime.now().astimezone() + timedelta(seconds=delay_seconds)
        scheduler.add_job(
            self._callback,
            trigger=DateTrigger(run_date=run_at),
            args=(target_id,),
            id=_retry_id(target_id),
            name=f"Retry {target_id}",
            replace_existing=True,
        )
        logger.info("Retrying %s in %.0fs", target_id, delay_seconds)

    def has_pending_retry(self, target_id: str) -> bool:
        if self._scheduler is None:
            return False
        return self._scheduler.get_job(_retry_id(target_id)) is not None

    def stop_sync(self, target_id: str) -> None:
        """Remove the periodic job and any pending retry of a target."""
        if self._scheduler is None:
            return
        for job_id in (_job_id(target_id), _retry_id(target_id)):
            try:
                self._scheduler.remove_job(job_id)
            except JobLookupError:
                pass

    def stop_all(self) -> None:
        if self._scheduler is not None:
            self._scheduler.remove_all_jobs()

    def next_sync_time(self, target_id: str) -> datetime | None:
        """Next periodic run of a target, if scheduled."""
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(_job_id(target_id))
        return job.next_run_time if job else None

    def _require(self) -> BackgroundScheduler:
        if self._scheduler is None:
            raise RuntimeError("Scheduler is not running")
        return self._scheduler
