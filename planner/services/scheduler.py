# planner/services/scheduler.py
import logging
from typing import Awaitable, Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

scheduler: AsyncIOScheduler | None = None
logger = logging.getLogger(__name__)


def start_scheduler() -> AsyncIOScheduler:
    """Start the process-wide scheduler; must be called from a running event loop."""
    global scheduler
    if scheduler:
        return scheduler
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.start()
    logger.info("Poll scheduler started")
    return scheduler


def shutdown_scheduler() -> None:
    global scheduler
    if not scheduler:
        return
    scheduler.shutdown(wait=False)
    scheduler = None
    logger.info("Poll scheduler stopped")


def add_poll_job(job_id: str, func: Callable[[], Awaitable[None]], seconds: float) -> None:
    """(Re)register ``func`` to run every ``seconds``; a tick still running is not overlapped."""
    sched = start_scheduler()
    sched.add_job(
        func,
        IntervalTrigger(seconds=seconds),
        id=job_id,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.debug("Poll job %s every %.2fs", job_id, seconds)


def remove_job(job_id: str) -> None:
    if not scheduler:
        return
    try:
        scheduler.remove_job(job_id)
    except JobLookupError:
        pass


def job_ids() -> list[str]:
    if not scheduler:
        return []
    return [j.id for j in scheduler.get_jobs()]
