"""
Ranking API Endpoints.

GET  /api/v1/rankings/regions                        : top users of every region
GET  /api/v1/rankings/regions/{region}               : top users of one region
POST /api/v1/rankings/regions/{region}/recalculate   : rewrite cached ranks now
GET  /api/v1/rankings/users/{user_id}                : cached rank of one user
"""

import uuid

from fastapi import APIRouter, Depends, Query

from seedledger.schemas.rankings import (
    RecalculateResponse,
    RegionRanking,
    RegionRankingEntry,
    UserRankResponse,
)
from seedledger.services.cache import invalidate_region
from seedledger.services.registry import ServiceRegistry, get_services


router = APIRouter(prefix="/api/v1/rankings", tags=["rankings"])


@router.get("/regions", response_model=list[RegionRanking])
async def all_regions_ranking(
    limit_per_region: int = Query(default=3, ge=1, le=100),
    services: ServiceRegistry = Depends(get_services),
):
    async with services.session() as session:
        return await services.ranking_queries.get_all_regions_ranking(session, limit_per_region)


@router.get("/regions/{region}", response_model=list[RegionRankingEntry])
async def region_ranking(
    region: str,
    limit: int = Query(default=10, ge=1, le=100),
    services: ServiceRegistry = Depends(get_services),
):
    async with services.session() as session:
        return await services.ranking_queries.get_region_ranking(session, region, limit)


@router.post("/regions/{region}/recalculate", response_model=RecalculateResponse)
async def recalculate_region(
    region: str,
    services: ServiceRegistry = Depends(get_services),
):
    """Recompute a region synchronously, bypassing the debounce queue."""
    async with services.session() as session:
        ranked = await services.recalculator.recalculate_region(session, region)
    await invalidate_region(region)
    return RecalculateResponse(region=region, ranked=ranked)


@router.get("/users/{user_id}", response_model=UserRankResponse)
async def user_rank(
    user_id: uuid.UUID,
    services: ServiceRegistry = Depends(get_services),
):
    async with services.session() as session:
        return await services.ranking_queries.get_user_rank(session, user_id)
