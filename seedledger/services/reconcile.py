"""
Reconciliation Service: keeps the ledger complete.

FLOW:
  1. Count resolved predictions and settlement ledger entries
  2. Find resolved predictions with no ledger entry (resolved-but-unledgered)
  3. Repair each: apply its seeds to the balance, append the missing
     entry and, for competition decisions, count the result, in one
     transaction per prediction
  4. Log the run in reconcile_log

Settlement writes the latch, balance and ledger entry in one transaction,
so gaps only come from rows written outside the engine (imports, manual
fixes, older writers). Such rows also missed the competition counters, so a
repair applies those too and triggers a region recompute. The unique
related_id makes a repair that races another repair fail instead of paying
twice.
"""

import uuid
from datetime import datetime

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from seedledger.config import settings
from seedledger.db.models import Decision, Prediction, ReconcileLog, SeedsTransaction
from seedledger.exceptions import DataIntegrityError
from seedledger.schemas.enums import (
    RELATED_TYPE_ANTICIPATION,
    PredictionStatus,
    SettlementReason,
)
from seedledger.schemas.reconcile import ReconcileResult, ReconcileStatusResponse
from seedledger.services.cache import invalidate_region
from seedledger.services.ledger import LedgerWriter
from seedledger.services.recompute_queue import RegionRecomputeQueue

logger = structlog.get_logger(__name__)


def _unledgered_query():
    return (
        select(
            Prediction.id,
            Prediction.user_id,
            Prediction.seeds_earned,
            Decision.competition,
        )
        .join(Decision, Decision.id == Prediction.decision_id)
        .outerjoin(SeedsTransaction, SeedsTransaction.related_id == Prediction.id)
        .where(
            Prediction.status == PredictionStatus.RESOLVED.value,
            SeedsTransaction.id.is_(None),
        )
    )


class ReconcileService:
    """Detects and repairs resolved predictions missing their ledger entry."""

    def __init__(
        self,
        ledger: LedgerWriter | None = None,
        recompute_queue: RegionRecomputeQueue | None = None,
        competition_tag: str | None = None,
    ) -> None:
        self.ledger = ledger or LedgerWriter()
        self.recompute_queue = recompute_queue
        self.competition_tag = competition_tag or settings.competition_tag

    async def run(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        limit: int = 500,
    ) -> ReconcileResult:
        """Repair up to `limit` unledgered predictions and log the run."""
        reconcile_id = f"recon-{uuid.uuid4().hex[:12]}"
        started_at = datetime.utcnow()
        logger.info("reconcile_started", reconcile_id=reconcile_id, limit=limit)

        async with session_factory() as session:
            session.add(
                ReconcileLog(reconcile_id=reconcile_id, status="running", started_at=started_at)
            )
            await session.commit()

        total_resolved = total_ledgered = missing_count = 0
        repaired = failed = 0
        errors: list[dict] = []
        try:
            async with session_factory() as session:
                total_resolved = await self._count_resolved(session)
                total_ledgered = await self._count_ledgered(session)
                missing_count = await self._count_unledgered(session)
                missing = (await session.execute(
                    _unledgered_query().order_by(Prediction.resolved_at.asc()).limit(limit)
                )).all()

            logger.info(
                "reconcile_diff",
                reconcile_id=reconcile_id,
                total_resolved=total_resolved,
                total_ledgered=total_ledgered,
                missing=missing_count,
            )

            for row in missing:
                try:
                    if await self._repair(session_factory, row):
                        repaired += 1
                except Exception as e:
                    failed += 1
                    errors.append({"prediction_id": str(row.id), "error": str(e)[:500]})
                    logger.error(
                        "reconcile_repair_failed",
                        prediction_id=str(row.id),
                        error=str(e),
                    )

            if failed == 0:
                status = "completed"
            elif repaired > 0:
                status = "partial"
            else:
                status = "failed"
            error_message = None
        except Exception as e:
            status = "failed"
            error_message = str(e)[:2000]
            logger.error("reconcile_failed", reconcile_id=reconcile_id, error=str(e))
            await self._finish(
                session_factory, reconcile_id, status, total_resolved, total_ledgered,
                missing_count, repaired, failed, errors, error_message,
            )
            raise

        log = await self._finish(
            session_factory, reconcile_id, status, total_resolved, total_ledgered,
            missing_count, repaired, failed, errors, error_message,
        )
        logger.info(
            "reconcile_completed",
            reconcile_id=reconcile_id,
            status=status,
            missing=missing_count,
            repaired=repaired,
            failed=failed,
        )
        return self._log_to_result(log)

    async def _repair(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        row,
    ) -> bool:
        """
        Apply one missing settlement effect: seeds and ledger entry, plus the
        competition counters when the decision is part of the competition.

        False when another writer got there first.
        """
        prediction_id = row.id
        seeds_earned = row.seeds_earned
        if not seeds_earned:
            raise DataIntegrityError(
                f"Resolved prediction without seeds: {prediction_id}",
                details={"prediction_id": str(prediction_id)},
            )
        correct = seeds_earned > 0
        reason = (
            SettlementReason.ANTICIPATION_WON if correct
            else SettlementReason.ANTICIPATION_LOST
        )
        region = None
        async with session_factory() as session:
            try:
                await self.ledger.apply(
                    session,
                    row.user_id,
                    seeds_earned,
                    reason.value,
                    related_id=prediction_id,
                )
                if row.competition == self.competition_tag:
                    region = await self.ledger.record_competition_result(
                        session, row.user_id, correct
                    )
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info("reconcile_already_repaired", prediction_id=str(prediction_id))
                return False
            except Exception:
                await session.rollback()
                raise

        if region:
            await invalidate_region(region)
            if self.recompute_queue is not None:
                self.recompute_queue.enqueue(region)
        logger.info(
            "reconcile_repaired",
            prediction_id=str(prediction_id),
            seeds=seeds_earned,
            region=region,
        )
        return True

    async def _finish(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        reconcile_id: str,
        status: str,
        total_resolved: int,
        total_ledgered: int,
        missing_count: int,
        repaired: int,
        failed: int,
        errors: list[dict],
        error_message: str | None,
    ) -> ReconcileLog:
        async with session_factory() as session:
            log = (await session.execute(
                select(ReconcileLog).where(ReconcileLog.reconcile_id == reconcile_id)
            )).scalar_one()
            log.total_resolved = total_resolved
            log.total_ledgered = total_ledgered
            log.missing_count = missing_count
            log.repaired_count = repaired
            log.failed_count = failed
            log.errors = errors
            log.status = status
            log.error_message = error_message
            log.completed_at = datetime.utcnow()
            await session.commit()
        return log

    async def get_status(self, session: AsyncSession) -> ReconcileStatusResponse:
        """Last run plus a live check for unledgered predictions."""
        latest = (await session.execute(
            select(ReconcileLog).order_by(ReconcileLog.started_at.desc()).limit(1)
        )).scalar_one_or_none()
        missing = await self._count_unledgered(session)
        return ReconcileStatusResponse(
            last_run=self._log_to_result(latest) if latest else None,
            missing_count=missing,
            is_consistent=missing == 0,
        )

    @staticmethod
    async def _count_resolved(session: AsyncSession) -> int:
        return (await session.execute(
            select(func.count(Prediction.id)).where(
                Prediction.status == PredictionStatus.RESOLVED.value
            )
        )).scalar_one()

    @staticmethod
    async def _count_ledgered(session: AsyncSession) -> int:
        return (await session.execute(
            select(func.count(SeedsTransaction.id)).where(
                SeedsTransaction.related_type == RELATED_TYPE_ANTICIPATION
            )
        )).scalar_one()

    @staticmethod
    async def _count_unledgered(session: AsyncSession) -> int:
        return (await session.execute(
            select(func.count()).select_from(_unledgered_query().subquery())
        )).scalar_one()

    @staticmethod
    def _log_to_result(log: ReconcileLog) -> ReconcileResult:
        """Convert a ReconcileLog ORM instance to a ReconcileResult schema."""
        return ReconcileResult(
            reconcile_id=log.reconcile_id,
            total_resolved=log.total_resolved,
            total_ledgered=log.total_ledgered,
            missing_count=log.missing_count,
            repaired_count=log.repaired_count,
            failed_count=log.failed_count,
            status=log.status,
            errors=log.errors or [],
            started_at=log.started_at,
            completed_at=log.completed_at,
        )
