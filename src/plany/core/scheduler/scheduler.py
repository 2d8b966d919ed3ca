from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import timezone
from typing import Any

from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from plany.core.config import Settings

MAINTENANCE_JOB_ID = "maintenance-cleanup"


class SchedulerService:
    """Periodic jobs on the API event loop. Jobs are re-registered at every startup."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.test_mode = settings.test_mode
        self.scheduler = AsyncIOScheduler(jobstores={"default": MemoryJobStore()}, timezone=timezone.utc)
        self._started = False

    def start(self) -> None:
        if self.test_mode or self._started:
            return
        self.scheduler.start()
        self._started = True

    def shutdown(self) -> None:
        if self._started:
            self.scheduler.shutdown(wait=False)
            self._started = False

    def add_maintenance(self, func: Callable[..., Awaitable[Any]], kwargs: dict[str, Any]) -> None:
        self.scheduler.add_job(
            func,
            trigger="interval",
            id=MAINTENANCE_JOB_ID,
            minutes=self.settings.cleanup_every_minutes,
            kwargs=kwargs,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )

    def list_jobs(self) -> list[dict[str, str | None]]:
        jobs: list[dict[str, str | None]] = []
        for job in self.scheduler.get_jobs():
            next_run_time = getattr(job, "next_run_time", None)
            jobs.append(
                {
                    "id": job.id,
                    "trigger": str(job.trigger),
                    "next_run_time_iso": next_run_time.isoformat() if next_run_time else None,
                }
            )
        return jobs
