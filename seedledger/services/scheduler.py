"""
Settlement Scheduler: runs in a separate process (seedledger-scheduler).

NOT inside the API process, so long settlement batches never block requests.

Jobs:
1. Settle resolved decisions (every SEEDLEDGER_SETTLEMENT_INTERVAL_MINUTES)
2. Reconcile the ledger (daily, SEEDLEDGER_RECONCILE_CRON_HOUR:00)

Each job has max_instances=1, so a slow run is never overlapped by the next.
"""

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from seedledger.config import settings
from seedledger.services.registry import ServiceRegistry

logger = structlog.get_logger(__name__)


class SettlementScheduler:
    """Background scheduler for settlement and reconciliation."""

    def __init__(self, services: ServiceRegistry):
        self.services = services
        self.scheduler = AsyncIOScheduler()

    def start(self):
        """Register and start all scheduled jobs."""
        self.scheduler.add_job(
            self.settle_resolved,
            IntervalTrigger(minutes=settings.settlement_interval_minutes),
            id="settle_resolved",
            max_instances=1,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.reconcile,
            CronTrigger(hour=settings.reconcile_cron_hour, minute=0),
            id="reconcile",
            max_instances=1,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("settlement_scheduler_started")

    def stop(self):
        """Gracefully stop the scheduler."""
        self.scheduler.shutdown(wait=True)
        logger.info("settlement_scheduler_stopped")

    async def settle_resolved(self):
        """Settle one batch of resolved decisions."""
        logger.info("scheduled_settlement_started")
        try:
            batch = await self.services.settlement.settle_all_resolved_decisions()
        except Exception as e:
            logger.error("scheduled_settlement_failed", error=str(e))
            return
        # Run the recomputes this batch queued before the next tick
        await self.services.recompute_queue.drain()
        logger.info(
            "scheduled_settlement_completed",
            decisions=batch.decisions,
            resolved=batch.resolved,
            errors=len(batch.errors),
        )

    async def reconcile(self):
        """Repair resolved-but-unledgered predictions."""
        try:
            result = await self.services.reconcile.run(
                self.services.session_factory, limit=settings.reconcile_batch_size
            )
        except Exception as e:
            logger.error("scheduled_reconcile_failed", error=str(e))
            return
        await self.services.recompute_queue.drain()
        logger.info(
            "scheduled_reconcile_completed",
            status=result.status,
            repaired=result.repaired_count,
        )
