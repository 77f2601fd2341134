import logging
from typing import Callable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.config import settings
from core.database import async_session_maker
from ingestion.base import ReportSource
from ingestion.runner import SyncController
from ingestion.sources import build_sources

logger = logging.getLogger(__name__)


class SyncScheduler:
    def __init__(
        self,
        session_factory=None,
        source_factory: Optional[Callable[[], List[ReportSource]]] = None,
        interval_minutes: Optional[int] = None
    ):
        self.scheduler = AsyncIOScheduler()
        self.session_factory = session_factory or async_session_maker
        self.source_factory = source_factory or build_sources
        self.interval_minutes = interval_minutes or settings.SCHEDULE_INTERVAL_MINUTES

    async def run_sync_job(self):
        """Job to run one sync pass over every configured source"""
        logger.info("Scheduler: Starting sync job")
        async with self.session_factory() as session:
            try:
                sources = self.source_factory()
                controller = SyncController(session, sources)
                await controller.run()
            except Exception as e:
                logger.error(f"Scheduler: sync job failed - {e}")

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_sync_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id="sync_job",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        self.scheduler.start()
        logger.info(f"Sync scheduler started, every {self.interval_minutes} minutes")

    def stop(self):
        self.scheduler.shutdown()
        logger.info("Sync scheduler stopped")
