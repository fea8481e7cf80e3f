from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from ibadah.dispatch import DispatchResult


Sweep = Callable[[], DispatchResult]

PRAYER_JOB_ID = "dispatch_prayer"
SCHEDULED_JOB_ID = "dispatch_scheduled"


@dataclass
class DispatchScheduler:
    """In-process trigger for the dispatch sweeps when no external cron is used."""

    scheduler: BackgroundScheduler
    prayer_sweep: Sweep
    scheduled_sweep: Sweep
    prayer_interval_minutes: int = 5
    misfire_grace_seconds: int = 60

    def __post_init__(self) -> None:
        self._logger = logging.getLogger(self.__class__.__name__)

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()

    def schedule_jobs(self) -> None:
        self._add(
            PRAYER_JOB_ID,
            self.prayer_sweep,
            CronTrigger(minute=f"*/{self.prayer_interval_minutes}"),
        )
        self._add(SCHEDULED_JOB_ID, self.scheduled_sweep, CronTrigger(minute=0))

    def _add(self, job_id: str, sweep: Sweep, trigger: CronTrigger) -> None:
        # max_instances=1 keeps sweeps of the same kind from overlapping here.
        self.scheduler.add_job(
            self._run,
            trigger=trigger,
            id=job_id,
            args=[job_id, sweep],
            replace_existing=True,
            misfire_grace_time=self.misfire_grace_seconds,
            coalesce=True,
            max_instances=1,
        )
        self._logger.info("Scheduled %s with %s", job_id, trigger)

    def _run(self, job_id: str, sweep: Sweep) -> None:
        result = sweep()
        self._logger.info("%s finished: sent=%s errors=%s", job_id, result.sent, len(result.errors))
