import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from core.config import settings
from core.exceptions import MirrorError, SyncLockError
from mirror.bootstrap import open_sync_runner

logger = logging.getLogger(__name__)


class SyncScheduler:
    def __init__(self, config=None, runner_factory=open_sync_runner):
        self.config = config or settings
        self.runner_factory = runner_factory
        self.scheduler = AsyncIOScheduler()

    async def run_sync_job(self):
        """Job to run one sync pass"""
        logger.info("Scheduler: Starting sync pass")
        try:
            async with self.runner_factory(self.config) as runner:
                result = await runner.run()
            logger.info(f"Scheduler: Sync pass finished with status {result.status}")
        except SyncLockError:
            logger.warning("Scheduler: Previous sync pass still running, skipping")
        except MirrorError as e:
            logger.error(f"Scheduler: Sync pass failed - {e}")

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_sync_job,
            trigger=IntervalTrigger(minutes=self.config.SYNC_INTERVAL_MINUTES),
            id="sync_job",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        self.scheduler.start()
        logger.info("Sync Scheduler started")

    def stop(self):
        self.scheduler.shutdown()
        logger.info("Sync Scheduler stopped")
