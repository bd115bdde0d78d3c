"""
Region Ranking Recalculator.

Full recompute of one region's leaderboard:
  1. Users with selected_region == region and total_predictions > 0
  2. accuracy = correct / total × 100
  3. Sort by accuracy desc; accuracies within ACCURACY_TOLERANCE count as
     equal and are ordered by correct count desc
  4. rank = position + 1 (dense: exactly 1..N)

Recomputing the same data always yields the same ranks.
"""

import functools
import uuid
from dataclasses import dataclass
from typing import Iterable

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from seedledger.db.models import User

logger = structlog.get_logger(__name__)

ACCURACY_TOLERANCE: float = 0.01


@dataclass(frozen=True)
class Participant:
    """Competition snapshot of one user."""
    user_id: uuid.UUID
    correct: int
    total: int

    @property
    def accuracy(self) -> float:
        return self.correct / self.total * 100 if self.total > 0 else 0.0


def _compare(a: Participant, b: Participant) -> int:
    if abs(a.accuracy - b.accuracy) > ACCURACY_TOLERANCE:
        return -1 if a.accuracy > b.accuracy else 1
    if a.correct != b.correct:
        return -1 if a.correct > b.correct else 1
    # Final key keeps equal participants in a stable, input-independent order
    return -1 if str(a.user_id) < str(b.user_id) else (1 if str(a.user_id) > str(b.user_id) else 0)


def rank_participants(participants: Iterable[Participant]) -> list[Participant]:
    """Order participants for display. Index + 1 is the rank."""
    eligible = [p for p in participants if p.total > 0]
    # Pre-sort on the exact keys so the tolerance comparator sees the same
    # neighbours regardless of load order.
    eligible.sort(key=lambda p: (-p.accuracy, -p.correct, str(p.user_id)))
    return sorted(eligible, key=functools.cmp_to_key(_compare))


def eligible_users_query(region: str):
    return select(User).where(
        User.selected_region == region,
        User.total_predictions > 0,
    )


class RankingRecalculator:
    """Writes the cached region_rank of every user in a region."""

    async def recalculate_region(self, session: AsyncSession, region: str) -> int:
        """
        Recompute and persist ranks for `region`. Does not commit.

        Users of the region who are not eligible (no settled predictions) get
        their cached rank cleared. Returns the number of ranked users.
        """
        result = await session.execute(eligible_users_query(region))
        users = list(result.scalars().all())
        ordered = rank_participants(
            Participant(user_id=u.id, correct=u.correct_predictions, total=u.total_predictions)
            for u in users
        )

        for index, participant in enumerate(ordered):
            await session.execute(
                update(User)
                .where(User.id == participant.user_id)
                .values(region_rank=index + 1)
                .execution_options(synchronize_session=False)
            )

        await session.execute(
            update(User)
            .where(
                User.selected_region == region,
                User.total_predictions <= 0,
                User.region_rank.is_not(None),
            )
            .values(region_rank=None)
            .execution_options(synchronize_session=False)
        )

        logger.info("region_recomputed", region=region, ranked=len(ordered))
        return len(ordered)

