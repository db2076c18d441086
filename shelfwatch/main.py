"""Main application entry point."""

import asyncio
import logging
import signal

from prometheus_client import start_http_server

from shelfwatch import metrics
from shelfwatch.config import settings
from shelfwatch.db.models import Base
from shelfwatch.db.session import engine
from shelfwatch.logging_config import setup_logging
from shelfwatch.worker.scheduler import setup_scheduler
from shelfwatch.worker.tasks import task_runner

setup_logging()
logger = logging.getLogger(__name__)


async def run():
    """Start the crawler worker and run until interrupted."""
    logger.info("Starting shelfwatch...")
    metrics.app_info.info({"version": "0.1.0"})
    start_http_server(settings.metrics_port)
    logger.info(f"Metrics exposed on port {settings.metrics_port}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await task_runner.initialize()

    scheduler = setup_scheduler()
    scheduler.start()
    logger.info("Scheduler started")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Signal handlers are unavailable on Windows event loops
            pass

    try:
        await stop.wait()
    finally:
        logger.info("Shutting down...")
        scheduler.shutdown()
        await task_runner.close()
        await engine.dispose()
        logger.info("Shutdown complete")


def main():
    asyncio.run(run())


if __name__ == "__main__":
    main()
