"""APScheduler integration for FastAPI.

Owns the single repeating job that drives the position lifecycle tick.
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from airtrack.config import settings

logger = logging.getLogger(__name__)

TICK_JOB_ID = "lifecycle_tick"


class TickScheduler:
    """Runs ``job`` every ``interval_ms``, first run immediately on start."""

    def __init__(self, job: Callable[[], Awaitable[None]], interval_ms: int):
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        self.job = job
        self.interval_ms = interval_ms
        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)

    def _trigger(self) -> IntervalTrigger:
        return IntervalTrigger(seconds=self.interval_ms / 1000)

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self):
        """Register the tick job and start the scheduler."""
        self._scheduler.add_job(
            self.job,
            trigger=self._trigger(),
            id=TICK_JOB_ID,
            name="Position lifecycle tick",
            next_run_time=datetime.now(timezone.utc),
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=max(1, self.interval_ms // 1000),
        )
        self._scheduler.start()
        logger.info(f"Scheduler started: lifecycle tick every {self.interval_ms}ms")

    def reschedule(self, interval_ms: int):
        """Change the tick interval of a running scheduler."""
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        self.interval_ms = interval_ms
        if self._scheduler.get_job(TICK_JOB_ID):
            self._scheduler.reschedule_job(TICK_JOB_ID, trigger=self._trigger())
            logger.info(f"Rescheduled lifecycle tick to every {interval_ms}ms")

    def stop(self):
        """Shut down the scheduler; an in-flight tick runs to completion."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")

    def status(self) -> dict:
        jobs = self._scheduler.get_jobs()
        return {
            "running": self._scheduler.running,
            "interval_ms": self.interval_ms,
            "job_count": len(jobs),
            "jobs": [
                {
                    "id": j.id,
                    "name": j.name,
                    "next_run": str(j.next_run_time) if j.next_run_time else None,
                    "trigger": str(j.trigger),
                }
                for j in jobs
            ],
        }


_tick_scheduler: TickScheduler | None = None


def start_scheduler() -> TickScheduler:
    """Start the process-wide lifecycle scheduler."""
    global _tick_scheduler
    from airtrack.engine.tick import run_scheduled_tick

    _tick_scheduler = TickScheduler(run_scheduled_tick, settings.poll_interval_ms)
    _tick_scheduler.start()
    return _tick_scheduler


def stop_scheduler():
    """Shut down the scheduler."""
    if _tick_scheduler is not None:
        _tick_scheduler.stop()


def get_scheduler_status() -> dict:
    """Return current scheduler state for the API."""
    if _tick_scheduler is None:
        return {"running": False, "interval_ms": settings.poll_interval_ms, "job_count": 0, "jobs": []}
    return _tick_scheduler.status()
