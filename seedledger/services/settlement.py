"""
Settlement Engine: pays out or penalizes every pending prediction of a
resolved decision, exactly once.

FLOW (per decision):
  1. Load the resolution (missing → resolution_not_found, call ends)
  2. Load the decision's pending predictions
  3. For each prediction, in its own transaction:
       a. Score it
       b. Flip pending → resolved with a conditional UPDATE; losing that
          race means another settler already paid it, so skip
       c. Increment the balance atomically, refresh the level
       d. Append the ledger entry
       e. Competition decisions: bump the user's correct/total counts
     b–e commit together; a failure rolls the item back and is recorded.
  4. Enqueue ranking recomputes for the touched regions

A re-run only sees predictions that are still pending, so running the same
entry point again is the recovery path for failed items.
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import and_, exists, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from seedledger.config import settings
from seedledger.db.models import Decision, Prediction, Resolution
from seedledger.engine.scoring import ScoringRules, rules_from_settings, settle
from seedledger.exceptions import (
    AlreadyResolvedError,
    DataIntegrityError,
    ResolutionNotFoundError,
    ValidationError,
)
from seedledger.schemas.enums import Issue, PredictionResult, PredictionStatus
from seedledger.schemas.settlement import (
    BatchSettlementResult,
    SettlementError,
    SettlementResult,
)
from seedledger.services.cache import invalidate_region
from seedledger.services.ledger import LedgerWriter
from seedledger.services.recompute_queue import RegionRecomputeQueue

logger = structlog.get_logger(__name__)

MAX_BATCH_SIZE: int = 500

# ── Metrics counters (in-memory, exported via /api/v1/settlements/metrics) ──

_settlement_metrics = {
    "decisions_settled": 0,
    "predictions_resolved": 0,
    "predictions_skipped": 0,
    "errors": 0,
}


def get_settlement_metrics() -> dict:
    """Get current settlement metrics snapshot."""
    return dict(_settlement_metrics)


@dataclass(frozen=True)
class _PendingPrediction:
    id: uuid.UUID
    user_id: uuid.UUID
    issue: str
    stake: int


def _error_from(exc: Exception, item_id: str, decision_id: str) -> SettlementError:
    return SettlementError(
        item_id=item_id,
        kind=getattr(exc, "kind", "internal_error"),
        message=getattr(exc, "message", None) or str(exc) or type(exc).__name__,
        decision_id=decision_id,
    )


def clamp_confidence(confidence: Optional[float], decision_id: str) -> float:
    """Bring a resolution confidence into [0, 100]."""
    if confidence is None:
        raise DataIntegrityError(
            f"Resolution without confidence: {decision_id}",
            details={"decision_id": decision_id},
        )
    clamped = min(100.0, max(0.0, float(confidence)))
    if clamped != confidence:
        logger.warning(
            "resolution_confidence_clamped",
            decision_id=decision_id,
            confidence=confidence,
            clamped=clamped,
        )
    return clamped


class SettlementEngine:
    """Settles predictions against decision resolutions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: Optional[LedgerWriter] = None,
        rules: Optional[ScoringRules] = None,
        recompute_queue: Optional[RegionRecomputeQueue] = None,
        competition_tag: Optional[str] = None,
        concurrency: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.ledger = ledger or LedgerWriter()
        self.rules = rules or rules_from_settings(settings)
        self.recompute_queue = recompute_queue
        self.competition_tag = competition_tag or settings.competition_tag
        self.concurrency = concurrency or settings.settlement_concurrency
        # (resolved_at, decision_id) of the last decision picked by a batch
        self._batch_cursor: Optional[tuple[datetime, uuid.UUID]] = None

    # ── One decision ──────────────────────────────────────────────────

    async def settle_decision(self, decision_id: uuid.UUID | str) -> SettlementResult:
        """
        Settle every pending prediction of one decision.

        Raises ValidationError for a missing or malformed id; every other
        failure is reported in the result.
        """
        decision_uuid = self._parse_decision_id(decision_id)
        did = str(decision_uuid)
        result = SettlementResult(decision_id=did)

        try:
            async with self.session_factory() as session:
                resolution, competition = await self._load_resolution(session, decision_uuid)
                pending = await self._load_pending(session, decision_uuid)
            resolved_issue = Issue(resolution.issue)
            confidence = clamp_confidence(resolution.confidence, did)
        except Exception as e:
            result.errors.append(_error_from(e, did, did))
            _settlement_metrics["errors"] += 1
            logger.warning("settlement_decision_failed", decision_id=did, error=str(e))
            return result

        result.processed = len(pending)
        if not pending:
            logger.debug("settlement_nothing_pending", decision_id=did)
            return result

        is_competition = competition == self.competition_tag
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(prediction: _PendingPrediction) -> Optional[str]:
            async with semaphore:
                return await self._settle_prediction(
                    prediction, resolved_issue, confidence, is_competition
                )

        outcomes = await asyncio.gather(
            *(_bounded(p) for p in pending), return_exceptions=True
        )

        touched_regions: set[str] = set()
        for prediction, outcome in zip(pending, outcomes):
            if isinstance(outcome, AlreadyResolvedError):
                result.skipped += 1
                logger.info("prediction_already_resolved", prediction_id=str(prediction.id))
            elif isinstance(outcome, Exception):
                result.errors.append(_error_from(outcome, str(prediction.id), did))
                logger.error(
                    "prediction_settlement_failed",
                    prediction_id=str(prediction.id),
                    decision_id=did,
                    error=str(outcome),
                )
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                result.resolved += 1
                if outcome:
                    touched_regions.add(outcome)

        # Cached leaderboards must not outlive the committed stats
        for region in sorted(touched_regions):
            await invalidate_region(region)
            if self.recompute_queue is not None:
                self.recompute_queue.enqueue(region)

        _settlement_metrics["decisions_settled"] += 1
        _settlement_metrics["predictions_resolved"] += result.resolved
        _settlement_metrics["predictions_skipped"] += result.skipped
        _settlement_metrics["errors"] += len(result.errors)

        logger.info(
            "settlement_completed",
            decision_id=did,
            processed=result.processed,
            resolved=result.resolved,
            skipped=result.skipped,
            errors=len(result.errors),
        )
        return result

    async def _settle_prediction(
        self,
        prediction: _PendingPrediction,
        resolved_issue: Issue,
        confidence: float,
        is_competition: bool,
    ) -> Optional[str]:
        """
        Settle one prediction in its own transaction.

        Returns the region whose ranking changed, if any.
        """
        outcome = settle(prediction.issue, prediction.stake, resolved_issue, confidence, self.rules)

        async with self.session_factory() as session:
            try:
                flipped = await session.execute(
                    update(Prediction)
                    .where(
                        Prediction.id == prediction.id,
                        Prediction.status == PredictionStatus.PENDING.value,
                    )
                    .values(
                        status=PredictionStatus.RESOLVED.value,
                        result=(PredictionResult.WON if outcome.correct else PredictionResult.LOST).value,
                        seeds_earned=outcome.seeds_earned,
                        resolved_at=datetime.utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
                if flipped.rowcount != 1:
                    raise AlreadyResolvedError(str(prediction.id))

                await self.ledger.apply(
                    session,
                    prediction.user_id,
                    outcome.seeds_earned,
                    outcome.reason.value,
                    related_id=prediction.id,
                )

                region = None
                if is_competition:
                    region = await self.ledger.record_competition_result(
                        session, prediction.user_id, outcome.correct
                    )
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        logger.debug(
            "prediction_settled",
            prediction_id=str(prediction.id),
            seeds=outcome.seeds_earned,
            region=region,
        )
        return region

    # ── All resolved decisions ────────────────────────────────────────

    async def settle_all_resolved_decisions(
        self,
        limit: Optional[int] = None,
    ) -> BatchSettlementResult:
        """
        Settle resolved decisions that still have pending predictions.

        At most `limit` decisions per call (default from settings, max 500).
        Successive calls walk the candidates round-robin on
        (resolved_at, decision_id), wrapping at the end, so decisions that
        keep failing cannot occupy every batch. A failing decision is
        recorded and the batch moves on.
        """
        limit = settings.settlement_batch_size if limit is None else limit
        if not 1 <= limit <= MAX_BATCH_SIZE:
            raise ValidationError(
                f"limit must be between 1 and {MAX_BATCH_SIZE}", field="limit"
            )

        decision_ids = await self._next_batch(limit)

        batch = BatchSettlementResult()
        for decision_id in decision_ids:
            try:
                result = await self.settle_decision(decision_id)
            except Exception as e:
                batch.errors.append(_error_from(e, str(decision_id), str(decision_id)))
                logger.error("settlement_decision_crashed", decision_id=str(decision_id), error=str(e))
                continue
            batch.decisions += 1
            batch.processed += result.processed
            batch.resolved += result.resolved
            batch.skipped += result.skipped
            batch.errors.extend(result.errors)

        logger.info(
            "settlement_batch_completed",
            decisions=batch.decisions,
            processed=batch.processed,
            resolved=batch.resolved,
            errors=len(batch.errors),
        )
        return batch

    # ── Helpers ───────────────────────────────────────────────────────

    async def _next_batch(self, limit: int) -> list[uuid.UUID]:
        """Pick up to `limit` candidates after the cursor, wrapping to the start."""
        candidates = (
            select(Resolution.resolved_at, Resolution.decision_id)
            .where(
                exists().where(
                    Prediction.decision_id == Resolution.decision_id,
                    Prediction.status == PredictionStatus.PENDING.value,
                )
            )
            .order_by(Resolution.resolved_at.asc(), Resolution.decision_id.asc())
        )
        cursor = self._batch_cursor

        async with self.session_factory() as session:
            if cursor is None:
                rows = (await session.execute(candidates.limit(limit))).all()
            else:
                resolved_at, decision_id = cursor
                after = or_(
                    Resolution.resolved_at > resolved_at,
                    and_(
                        Resolution.resolved_at == resolved_at,
                        Resolution.decision_id > decision_id,
                    ),
                )
                rows = (await session.execute(candidates.where(after).limit(limit))).all()
                if len(rows) < limit:
                    wrapped = await session.execute(
                        candidates.where(~after).limit(limit - len(rows))
                    )
                    rows += wrapped.all()
                    logger.debug("settlement_batch_wrapped", picked=len(rows))

        self._batch_cursor = (rows[-1].resolved_at, rows[-1].decision_id) if rows else None
        return [row.decision_id for row in rows]

    @staticmethod
    def _parse_decision_id(decision_id: uuid.UUID | str) -> uuid.UUID:
        if isinstance(decision_id, uuid.UUID):
            return decision_id
        if not decision_id:
            raise ValidationError("decision_id is required", field="decision_id")
        try:
            return uuid.UUID(str(decision_id))
        except ValueError:
            raise ValidationError(
                f"decision_id is not a valid id: {decision_id}", field="decision_id"
            )

    @staticmethod
    async def _load_resolution(
        session: AsyncSession,
        decision_id: uuid.UUID,
    ) -> tuple[Resolution, Optional[str]]:
        row = (
            await session.execute(
                select(Resolution, Decision.competition)
                .join(Decision, Decision.id == Resolution.decision_id)
                .where(Resolution.decision_id == decision_id)
            )
        ).one_or_none()
        if row is None:
            raise ResolutionNotFoundError(str(decision_id))
        return row[0], row[1]

    @staticmethod
    async def _load_pending(
        session: AsyncSession,
        decision_id: uuid.UUID,
    ) -> list[_PendingPrediction]:
        rows = await session.execute(
            select(Prediction.id, Prediction.user_id, Prediction.issue, Prediction.stake)
            .where(
                Prediction.decision_id == decision_id,
                Prediction.status == PredictionStatus.PENDING.value,
            )
            .order_by(Prediction.created_at.asc())
        )
        return [
            _PendingPrediction(id=r.id, user_id=r.user_id, issue=r.issue, stake=r.stake)
            for r in rows.all()
        ]
