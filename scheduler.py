import asyncio
import logging
from typing import Awaitable, Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings


logger = logging.getLogger(__name__)


class RefreshScheduler:
    """Interval jobs that poll live report subscriptions.

    Jobs are coroutine functions, so they run on the event loop that started
    the scheduler.
    """

    def __init__(self, timezone: Optional[str] = None) -> None:
        self.scheduler = AsyncIOScheduler(timezone=timezone or get_settings().timezone)

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("refresh_scheduler_started")

    def add_refresh_job(
        self, job_id: str, func: Callable[[], Awaitable[None]], seconds: float
    ) -> None:
        self.start()
        self.scheduler.add_job(
            func,
            IntervalTrigger(seconds=seconds),
            id=job_id,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=max(1, int(seconds)),
        )
        logger.info(f"refresh_job_added: id={job_id} every={seconds}s")

    def remove_job(self, job_id: str) -> None:
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            return
        logger.info(f"refresh_job_removed: id={job_id}")

    def job_ids(self) -> list[str]:
        return [job.id for job in self.scheduler.get_jobs()]

    async def stop(self) -> None:
        """Shut down and let the loop apply the queued shutdown before returning."""
        if not self.scheduler.running:
            return
        self.scheduler.shutdown(wait=False)
        while self.scheduler.running:
            await asyncio.sleep(0)
        logger.info("refresh_scheduler_stopped")
