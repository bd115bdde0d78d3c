"""
Seeds Ledger: append-only audit trail of every balance mutation.

DESIGN:
  1. A balance change and its ledger entry are written in the caller's
     transaction; they commit or roll back together.
  2. Balances move only by atomic increments (balance = balance + :delta),
     never by writing back a value read earlier.
  3. Ledger entries are never modified or deleted. related_id is unique, so
     a prediction can be ledgered at most once.
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from seedledger.db.models import SeedsTransaction, User
from seedledger.engine.leveling import level_for
from seedledger.exceptions import UserNotFoundError
from seedledger.schemas.enums import RELATED_TYPE_ANTICIPATION, TransactionType
from seedledger.schemas.rankings import LedgerEntryResponse, WeeklyLeaderboardEntry

logger = structlog.get_logger(__name__)


def week_start(now: datetime) -> datetime:
    """Monday 00:00 of the week containing `now`."""
    monday = now - timedelta(days=now.weekday())
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)


class LedgerWriter:
    """Applies signed seeds to a user and records the matching ledger entry."""

    async def apply(
        self,
        session: AsyncSession,
        user_id: uuid.UUID,
        seeds_earned: int,
        reason: str,
        related_id: Optional[uuid.UUID] = None,
        related_type: str = RELATED_TYPE_ANTICIPATION,
    ) -> SeedsTransaction:
        """
        Increment the balance by `seeds_earned`, refresh the level and append
        one ledger entry. Does not commit.

        Raises UserNotFoundError when the user does not exist; nothing is
        written in that case.
        """
        result = await session.execute(
            update(User)
            .where(User.id == user_id)
            .values(seeds_balance=User.seeds_balance + seeds_earned)
            .returning(User.seeds_balance)
            .execution_options(synchronize_session=False)
        )
        new_balance = result.scalar_one_or_none()
        if new_balance is None:
            raise UserNotFoundError(str(user_id))

        before = level_for(new_balance - seeds_earned)
        after = level_for(new_balance)
        await session.execute(
            update(User)
            .where(User.id == user_id)
            .values(level=after.level, seeds_to_next_level=after.seeds_to_next_level)
            .execution_options(synchronize_session=False)
        )

        entry = SeedsTransaction(
            user_id=user_id,
            type=(TransactionType.EARNED if seeds_earned > 0 else TransactionType.LOST).value,
            amount=abs(seeds_earned),
            reason=reason,
            related_id=related_id,
            related_type=related_type if related_id is not None else None,
            level_before=before.level,
            level_after=after.level,
            created_at=datetime.utcnow(),
        )
        session.add(entry)
        await session.flush()

        logger.info(
            "ledger_recorded",
            user_id=str(user_id),
            seeds=seeds_earned,
            balance=new_balance,
            level_before=before.level,
            level_after=after.level,
            related_id=str(related_id) if related_id else None,
        )
        if after.level > before.level:
            logger.info("user_leveled_up", user_id=str(user_id), level=after.level)
        return entry

    async def record_competition_result(
        self,
        session: AsyncSession,
        user_id: uuid.UUID,
        correct: bool,
    ) -> Optional[str]:
        """
        Count one settled competition prediction for the user.

        Returns the user's selected region (None when they have not picked one).
        """
        result = await session.execute(
            update(User)
            .where(User.id == user_id)
            .values(
                total_predictions=User.total_predictions + 1,
                correct_predictions=User.correct_predictions + (1 if correct else 0),
            )
            .returning(User.selected_region)
            .execution_options(synchronize_session=False)
        )
        row = result.one_or_none()
        if row is None:
            raise UserNotFoundError(str(user_id))
        return row[0]

    # ── Read side ─────────────────────────────────────────────────────

    async def list_for_user(
        self,
        session: AsyncSession,
        user_id: uuid.UUID,
        limit: int = 50,
    ) -> list[LedgerEntryResponse]:
        """Most recent ledger entries for one user, newest first."""
        result = await session.execute(
            select(SeedsTransaction)
            .where(SeedsTransaction.user_id == user_id)
            .order_by(SeedsTransaction.created_at.desc())
            .limit(limit)
        )
        return [
            LedgerEntryResponse(
                id=str(tx.id),
                user_id=str(tx.user_id),
                type=tx.type,
                amount=tx.amount,
                reason=tx.reason,
                related_id=str(tx.related_id) if tx.related_id else None,
                related_type=tx.related_type,
                level_before=tx.level_before,
                level_after=tx.level_after,
                created_at=tx.created_at,
            )
            for tx in result.scalars().all()
        ]

    async def weekly_leaderboard(
        self,
        session: AsyncSession,
        limit: int = 10,
        now: Optional[datetime] = None,
    ) -> list[WeeklyLeaderboardEntry]:
        """Users ranked by seeds earned since Monday 00:00 (UTC)."""
        since = week_start(now or datetime.utcnow())
        total = func.sum(SeedsTransaction.amount).label("total")
        result = await session.execute(
            select(SeedsTransaction.user_id, total)
            .where(
                SeedsTransaction.type == TransactionType.EARNED.value,
                SeedsTransaction.created_at >= since,
            )
            .group_by(SeedsTransaction.user_id)
            .order_by(total.desc(), SeedsTransaction.user_id)
            .limit(limit)
        )
        rows = result.all()
        if not rows:
            return []

        users_result = await session.execute(
            select(User).where(User.id.in_([row.user_id for row in rows]))
        )
        users = {u.id: u for u in users_result.scalars().all()}

        leaderboard = []
        for index, row in enumerate(rows):
            user = users.get(row.user_id)
            leaderboard.append(
                WeeklyLeaderboardEntry(
                    user_id=str(row.user_id),
                    username=user.username if user else None,
                    name=user.name if user else None,
                    image=user.image if user else None,
                    total_seeds=int(row.total),
                    level=user.level if user else 1,
                    rank=index + 1,
                )
            )
        return leaderboard
