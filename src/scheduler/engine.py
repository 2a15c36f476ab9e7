"""BackgroundPoller — APScheduler lifecycle for the periodic passes."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from src.clock import SystemClock
from src.config import settings

if TYPE_CHECKING:
    from src.clock import Clock
    from src.notifications.dispatcher import NotificationDispatcher
    from src.tasks.generator import RecurringTaskGenerator

logger = logging.getLogger(__name__)

GENERATION_JOB = "recurring_generation"
DISPATCH_JOB = "notification_dispatch"
OVERDUE_JOB = "overdue_check"
CLEANUP_JOB = "notification_cleanup"


class BackgroundPoller:
    """Runs recurring-task generation, notification dispatch, the overdue
    check, and the retention sweep on independent schedules.

    Each job is limited to one running instance and coalesces missed
    ticks, so a tick that fires while the previous pass still runs is
    dropped.

    Args:
        generator: RecurringTaskGenerator for the generation pass.
        dispatcher: NotificationDispatcher for dispatch, overdue and retention.
        timezone: IANA timezone for the retention cron (default from settings).
        clock: Time source for the reported start time.
    """

    def __init__(
        self,
        generator: RecurringTaskGenerator,
        dispatcher: NotificationDispatcher,
        timezone: str | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._generator = generator
        self._dispatcher = dispatcher
        self._timezone = timezone or settings.scheduler_timezone
        self._clock = clock or SystemClock()
        self._scheduler: AsyncIOScheduler | None = None
        self._started_at: datetime | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Register the jobs and start the scheduler. No-op when already running."""
        if self._scheduler is not None:
            logger.debug("Poller already running")
            return

        scheduler = AsyncIOScheduler(timezone=self._timezone)
        job_defaults: dict[str, Any] = {"max_instances": 1, "coalesce": True, "replace_existing": True}
        scheduler.add_job(
            self.run_generation_pass,
            trigger=IntervalTrigger(minutes=settings.generation_interval_minutes),
            id=GENERATION_JOB,
            next_run_time=datetime.now(scheduler.timezone),
            **job_defaults,
        )
        scheduler.add_job(
            self.run_dispatch_pass,
            trigger=IntervalTrigger(minutes=settings.dispatch_interval_minutes),
            id=DISPATCH_JOB,
            **job_defaults,
        )
        scheduler.add_job(
            self.run_overdue_pass,
            trigger=IntervalTrigger(minutes=settings.overdue_interval_minutes),
            id=OVERDUE_JOB,
            **job_defaults,
        )
        scheduler.add_job(
            self.run_retention_pass,
            trigger=CronTrigger(hour=settings.retention_hour, minute=0, timezone=self._timezone),
            id=CLEANUP_JOB,
            **job_defaults,
        )
        scheduler.start()
        self._scheduler = scheduler
        self._started_at = self._clock.now()
        logger.info(
            "Poller started (generation=%dm, dispatch=%dm, overdue=%dm, cleanup=%02d:00 %s)",
            settings.generation_interval_minutes,
            settings.dispatch_interval_minutes,
            settings.overdue_interval_minutes,
            settings.retention_hour,
            self._timezone,
        )

    async def stop(self) -> None:
        """Shut down the scheduler. No-op when not running."""
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        self._started_at = None
        logger.info("Poller stopped")

    def status(self) -> dict[str, Any]:
        jobs = self._scheduler.get_jobs() if self._scheduler is not None else []
        return {
            "running": self.running,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "jobs": {
                job.id: job.next_run_time.isoformat() if job.next_run_time else None
                for job in jobs
            },
        }

    # -- Passes ----------------------------------------------------------------

    async def run_generation_pass(self) -> None:
        try:
            created = await self._generator.generate_due()
            if created:
                logger.info("Generation pass created %d task instance(s)", len(created))
        except Exception:
            logger.exception("Recurring task generation pass failed")

    async def run_dispatch_pass(self) -> None:
        try:
            results = await self._dispatcher.process_due()
            if results:
                summary = self._dispatcher.summarize(results)
                logger.info(
                    "Dispatch pass: %d processed, %d sent, %d failed",
                    summary.processed,
                    summary.successful,
                    summary.failed,
                )
        except Exception:
            logger.exception("Notification dispatch pass failed")

    async def run_overdue_pass(self) -> None:
        try:
            await self._dispatcher.schedule_overdue_notifications()
        except Exception:
            logger.exception("Overdue check pass failed")

    async def run_retention_pass(self) -> None:
        try:
            await self._dispatcher.cleanup_old_notifications(settings.retention_days)
        except Exception:
            logger.exception("Notification retention pass failed")
