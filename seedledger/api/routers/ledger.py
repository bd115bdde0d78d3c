"""
Ledger & Level API Endpoints.

GET /api/v1/ledger/users/{user_id} : a user's seeds history, newest first
GET /api/v1/ledger/weekly          : top earners since Monday
GET /api/v1/levels/{total_seeds}   : level curve lookup
"""

import uuid

from fastapi import APIRouter, Depends, Query

from seedledger.engine.leveling import level_for
from seedledger.schemas.rankings import (
    LedgerEntryResponse,
    LevelInfoResponse,
    WeeklyLeaderboardEntry,
)
from seedledger.services.registry import ServiceRegistry, get_services

router = APIRouter(prefix="/api/v1", tags=["ledger"])


@router.get("/ledger/users/{user_id}", response_model=list[LedgerEntryResponse])
async def user_ledger(
    user_id: uuid.UUID,
    limit: int = Query(default=50, ge=1, le=500),
    services: ServiceRegistry = Depends(get_services),
):
    async with services.session() as session:
        return await services.ledger.list_for_user(session, user_id, limit)


@router.get("/ledger/weekly", response_model=list[WeeklyLeaderboardEntry])
async def weekly_leaderboard(
    limit: int = Query(default=10, ge=1, le=100),
    services: ServiceRegistry = Depends(get_services),
):
    async with services.session() as session:
        return await services.ledger.weekly_leaderboard(session, limit)


@router.get("/levels/{total_seeds}", response_model=LevelInfoResponse)
async def level_info(total_seeds: int):
    info = level_for(total_seeds)
    return LevelInfoResponse(
        total_seeds=total_seeds,
        level=info.level,
        seeds_to_next_level=info.seeds_to_next_level,
        seeds_for_current_level=info.seeds_for_current_level,
    )
