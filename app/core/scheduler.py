"""In-process APScheduler for periodic sweeps."""

from collections.abc import Awaitable, Callable

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from app.config import settings

logger = structlog.get_logger()

_scheduler: AsyncIOScheduler | None = None


def get_scheduler() -> AsyncIOScheduler:
    """Global AsyncIOScheduler (not started)."""
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(
            timezone=settings.scheduler_timezone,
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 60,
            },
        )
    return _scheduler


def schedule_cron_job(job_id: str, func: Callable[[], Awaitable[object]], crontab: str) -> None:
    """Schedule ``func`` with a five-field crontab expression."""
    get_scheduler().add_job(
        func,
        CronTrigger.from_crontab(crontab, timezone=settings.scheduler_timezone),
        id=job_id,
        replace_existing=True,
    )


def schedule_interval_job(
    job_id: str, func: Callable[[], Awaitable[object]], seconds: int
) -> None:
    get_scheduler().add_job(
        func,
        IntervalTrigger(seconds=seconds),
        id=job_id,
        replace_existing=True,
    )


def start_scheduler() -> None:
    sch = get_scheduler()
    if not sch.running:
        sch.start()
        logger.info("scheduler_started", jobs=[job.id for job in sch.get_jobs()])


def shutdown_scheduler(wait: bool = False) -> None:
    """Stop the scheduler and forget its jobs."""
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=wait)
        logger.info("scheduler_stopped")
    _scheduler = None
