"""
Region Recompute Queue: debounced, keyed by region.

Settlement enqueues a region every time it changes one of its participants'
stats. Triggers for a region that is already waiting are folded into the
waiting task, so a burst of settlements costs one recompute per region per
debounce window instead of one per prediction.

A single worker task runs due regions one at a time, each in its own
session and transaction. A failed recompute is logged and counted; the
worker keeps going.
"""

import asyncio
import contextlib
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from seedledger.config import settings
from seedledger.services.cache import invalidate_region
from seedledger.services.rankings import RankingRecalculator

logger = structlog.get_logger(__name__)


class RegionRecomputeQueue:
    """Coalescing queue of region recompute tasks."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        recalculator: Optional[RankingRecalculator] = None,
        debounce_seconds: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.recalculator = recalculator or RankingRecalculator()
        self.debounce_seconds = (
            settings.ranking_debounce_seconds if debounce_seconds is None else debounce_seconds
        )
        self._pending: dict[str, float] = {}   # region → due time (loop clock)
        self._worker: Optional[asyncio.Task] = None
        self._inflight: set[asyncio.Task] = set()
        self._metrics = {
            "enqueued": 0,
            "coalesced": 0,
            "executed": 0,
            "failed": 0,
        }

    @property
    def metrics(self) -> dict[str, int]:
        return dict(self._metrics)

    @property
    def pending_regions(self) -> list[str]:
        return list(self._pending)

    def enqueue(self, region: str) -> None:
        """Schedule a recompute of `region`; folded into a waiting one if present."""
        self._metrics["enqueued"] += 1
        if region in self._pending:
            self._metrics["coalesced"] += 1
            logger.debug("region_recompute_coalesced", region=region)
            return

        loop = asyncio.get_running_loop()
        self._pending[region] = loop.time() + self.debounce_seconds
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._run())

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while self._pending:
            region, due = min(self._pending.items(), key=lambda item: item[1])
            delay = due - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
                continue
            self._pending.pop(region, None)
            task = loop.create_task(self._execute(region))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            await task

    async def _execute(self, region: str) -> None:
        try:
            async with self.session_factory() as session:
                ranked = await self.recalculator.recalculate_region(session, region)
                await session.commit()
            await invalidate_region(region)
            self._metrics["executed"] += 1
            logger.debug("region_recompute_done", region=region, ranked=ranked)
        except Exception as e:
            self._metrics["failed"] += 1
            logger.error("region_recompute_failed", region=region, error=str(e))

    async def drain(self) -> None:
        """Run every waiting recompute now and wait for the one in progress."""
        while self._pending:
            region = next(iter(self._pending))
            self._pending.pop(region)
            await self._execute(region)
        if self._inflight:
            await asyncio.gather(*self._inflight)

    async def close(self) -> None:
        """Flush waiting regions and stop the worker."""
        await self.drain()
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
        self._worker = None
        logger.info("region_recompute_queue_closed", **self._metrics)
