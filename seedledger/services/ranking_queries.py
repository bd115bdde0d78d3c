"""
Ranking Query Service: read side of the regional leaderboards.

Every read re-runs filter + sort + slice against current user stats; the
cached region_rank column is only used for a user's own profile view.
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from seedledger.config import settings
from seedledger.db.models import User
from seedledger.exceptions import UserNotFoundError, ValidationError
from seedledger.schemas.rankings import (
    RegionRanking,
    RegionRankingEntry,
    UserRankResponse,
)
from seedledger.services.cache import (
    all_regions_key,
    cache_get,
    cache_set,
    region_ranking_key,
)
from seedledger.services.rankings import (
    Participant,
    eligible_users_query,
    rank_participants,
)

logger = structlog.get_logger(__name__)

ANONYMOUS_NAME = "Utilisateur anonyme"
MAX_RANKING_LIMIT: int = 100

FRENCH_REGIONS: tuple[str, ...] = (
    # Metropolitan
    "Auvergne-Rhône-Alpes",
    "Bourgogne-Franche-Comté",
    "Bretagne",
    "Centre-Val de Loire",
    "Corse",
    "Grand Est",
    "Hauts-de-France",
    "Île-de-France",
    "Normandie",
    "Nouvelle-Aquitaine",
    "Occitanie",
    "Pays de la Loire",
    "Provence-Alpes-Côte d'Azur",
    # Overseas
    "Guadeloupe",
    "Martinique",
    "Guyane",
    "La Réunion",
    "Mayotte",
)


def _check_limit(limit: int, field: str) -> None:
    if not 1 <= limit <= MAX_RANKING_LIMIT:
        raise ValidationError(f"{field} must be between 1 and {MAX_RANKING_LIMIT}", field=field)


def _display_name(user: User) -> str:
    return user.name or user.email or ANONYMOUS_NAME


class RankingQueryService:
    """Top-N per region and cross-region summaries."""

    async def get_region_ranking(
        self,
        session: AsyncSession,
        region: str,
        limit: int = 10,
    ) -> list[RegionRankingEntry]:
        """Top `limit` users of a region, ranked on current stats."""
        _check_limit(limit, "limit")

        key = region_ranking_key(region, limit)
        cached = await cache_get(key)
        if cached is not None:
            return [RegionRankingEntry(**entry) for entry in cached]

        entries = await self._compute_region(session, region, limit)
        await cache_set(
            key,
            [entry.model_dump() for entry in entries],
            ttl_seconds=settings.ranking_cache_ttl,
        )
        return entries

    async def get_all_regions_ranking(
        self,
        session: AsyncSession,
        limit_per_region: int = 3,
    ) -> list[RegionRanking]:
        """
        Top users of every region that has participants.

        Regions are ordered by the total predictions of their listed users,
        busiest first.
        """
        _check_limit(limit_per_region, "limit_per_region")

        key = all_regions_key(limit_per_region)
        cached = await cache_get(key)
        if cached is not None:
            return [RegionRanking(**region) for region in cached]

        rankings = []
        for region in FRENCH_REGIONS:
            top_users = await self._compute_region(session, region, limit_per_region)
            if top_users:
                rankings.append(RegionRanking(region=region, top_users=top_users))

        rankings.sort(key=lambda r: sum(u.total_predictions for u in r.top_users), reverse=True)

        await cache_set(
            key,
            [r.model_dump() for r in rankings],
            ttl_seconds=settings.ranking_cache_ttl,
        )
        logger.debug("all_regions_ranking_computed", regions=len(rankings))
        return rankings

    async def get_user_rank(
        self,
        session: AsyncSession,
        user_id: uuid.UUID,
    ) -> UserRankResponse:
        """Cached competition record of one user."""
        user: Optional[User] = await session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(str(user_id))
        total = user.total_predictions
        return UserRankResponse(
            user_id=str(user.id),
            selected_region=user.selected_region,
            region_rank=user.region_rank,
            correct_predictions=user.correct_predictions,
            total_predictions=total,
            accuracy=user.correct_predictions / total * 100 if total > 0 else 0.0,
        )

    @staticmethod
    async def _compute_region(
        session: AsyncSession,
        region: str,
        limit: int,
    ) -> list[RegionRankingEntry]:
        result = await session.execute(eligible_users_query(region))
        users = {u.id: u for u in result.scalars().all()}
        ordered = rank_participants(
            Participant(user_id=u.id, correct=u.correct_predictions, total=u.total_predictions)
            for u in users.values()
        )[:limit]

        entries = []
        for index, participant in enumerate(ordered):
            user = users[participant.user_id]
            entries.append(
                RegionRankingEntry(
                    user_id=str(user.id),
                    name=_display_name(user),
                    username=user.username,
                    image=user.image,
                    correct_predictions=participant.correct,
                    total_predictions=participant.total,
                    accuracy=participant.accuracy,
                    region_rank=index + 1,
                )
            )
        return entries
