"""
Service Registry: shared service instances for the API and the scheduler.

All services are created once, on first access, around one session factory.
Routers receive the registry through the get_services dependency, which
tests override to point at their own database.

Usage:
    from seedledger.services.registry import get_services
    services = get_services()
    result = await services.settlement.settle_decision(decision_id)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncGenerator, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from seedledger.db.engine import get_session_factory

logger = structlog.get_logger(__name__)


@dataclass
class ServiceRegistry:
    """Lazily built singletons bound to one session factory."""

    session_factory: async_sessionmaker[AsyncSession]
    _ledger: Optional[object] = field(default=None, repr=False)
    _recalculator: Optional[object] = field(default=None, repr=False)
    _recompute_queue: Optional[object] = field(default=None, repr=False)
    _settlement: Optional[object] = field(default=None, repr=False)
    _ranking_queries: Optional[object] = field(default=None, repr=False)
    _reconcile: Optional[object] = field(default=None, repr=False)

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session that commits on success and rolls back on error."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    @property
    def ledger(self):
        if self._ledger is None:
            from seedledger.services.ledger import LedgerWriter
            self._ledger = LedgerWriter()
            logger.debug("service_initialized", service="LedgerWriter")
        return self._ledger

    @property
    def recalculator(self):
        if self._recalculator is None:
            from seedledger.services.rankings import RankingRecalculator
            self._recalculator = RankingRecalculator()
            logger.debug("service_initialized", service="RankingRecalculator")
        return self._recalculator

    @property
    def recompute_queue(self):
        if self._recompute_queue is None:
            from seedledger.services.recompute_queue import RegionRecomputeQueue
            self._recompute_queue = RegionRecomputeQueue(
                self.session_factory, recalculator=self.recalculator
            )
            logger.debug("service_initialized", service="RegionRecomputeQueue")
        return self._recompute_queue

    @property
    def settlement(self):
        if self._settlement is None:
            from seedledger.services.settlement import SettlementEngine
            self._settlement = SettlementEngine(
                self.session_factory,
                ledger=self.ledger,
                recompute_queue=self.recompute_queue,
            )
            logger.debug("service_initialized", service="SettlementEngine")
        return self._settlement

    @property
    def ranking_queries(self):
        if self._ranking_queries is None:
            from seedledger.services.ranking_queries import RankingQueryService
            self._ranking_queries = RankingQueryService()
            logger.debug("service_initialized", service="RankingQueryService")
        return self._ranking_queries

    @property
    def reconcile(self):
        if self._reconcile is None:
            from seedledger.services.reconcile import ReconcileService
            self._reconcile = ReconcileService(
                ledger=self.ledger, recompute_queue=self.recompute_queue
            )
            logger.debug("service_initialized", service="ReconcileService")
        return self._reconcile

    async def close(self) -> None:
        """Flush pending ranking recomputes."""
        if self._recompute_queue is not None:
            await self._recompute_queue.close()


_registry: Optional[ServiceRegistry] = None


def get_services() -> ServiceRegistry:
    """Get the global service registry (created on first call)."""
    global _registry
    if _registry is None:
        _registry = ServiceRegistry(session_factory=get_session_factory())
    return _registry


async def close_services() -> None:
    global _registry
    if _registry is not None:
        await _registry.close()
        _registry = None
