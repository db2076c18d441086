"""APScheduler job definitions."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from shelfwatch.config import settings
from shelfwatch.worker.tasks import TaskRunner, task_runner

logger = logging.getLogger(__name__)


def setup_scheduler(runner: TaskRunner = task_runner) -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    A single interval job crawls every registered retailer; overlapping runs
    are prevented and missed runs are coalesced.

    Returns:
        Configured scheduler instance
    """
    scheduler = AsyncIOScheduler()
    interval = max(1, int(settings.crawl_interval_minutes))

    scheduler.add_job(
        runner.crawl_all_retailers,
        IntervalTrigger(minutes=interval),
        id="crawl_retailers",
        name="Crawl retailer listings and products",
        max_instances=1,  # Prevent overlapping runs
        coalesce=True,
        misfire_grace_time=600,
        replace_existing=True,
    )

    logger.info(f"Scheduler configured: retailer crawl every {interval} minutes")
    return scheduler
