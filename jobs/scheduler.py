"""Background job scheduler for the trade escrow engine"""

import logging
from typing import Any, Dict, Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import Config
from services.trade_expiry_service import TradeExpiryService

logger = logging.getLogger(__name__)

EXPIRY_JOB_ID = "expire_trades"


class TradeScheduler:
    """Runs the trade expiry sweep on a fixed interval"""

    def __init__(self, expiry_service: TradeExpiryService, interval_seconds: Optional[int] = None):
        self.expiry_service = expiry_service
        self.interval_seconds = interval_seconds or Config.EXPIRY_SWEEP_INTERVAL_SECONDS

        jobstores = {
            'default': MemoryJobStore()
        }
        executors = {
            'default': AsyncIOExecutor()
        }
        job_defaults = {
            'coalesce': True,  # Collapse missed runs into one
            'max_instances': 1,
            'misfire_grace_time': 120
        }

        self.scheduler = AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone='UTC'
        )
        self.last_result: Optional[Dict[str, Any]] = None

    def setup_jobs(self):
        """Register the expiry sweep job"""
        if self.scheduler.get_job(EXPIRY_JOB_ID):
            self.scheduler.remove_job(EXPIRY_JOB_ID)

        self.scheduler.add_job(
            self.expire_trades,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=EXPIRY_JOB_ID,
            name="Expire Overdue Trades",
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"⏰ SCHEDULER: expiry sweep every {self.interval_seconds}s")

    async def expire_trades(self) -> Dict[str, Any]:
        """Job body: one expiry sweep"""
        self.last_result = await self.expiry_service.process_expired_trades()
        if self.last_result["errors"]:
            logger.warning(f"⚠️ EXPIRY_JOB: {len(self.last_result['errors'])} errors in sweep")
        return self.last_result

    def start(self):
        """Start the scheduler"""
        self.setup_jobs()
        self.scheduler.start()
        logger.info("✅ SCHEDULER_STARTED")

    def shutdown(self):
        """Stop the scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("SCHEDULER_STOPPED")
