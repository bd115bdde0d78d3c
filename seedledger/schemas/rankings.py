"""Ranking, ledger and level read models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class RegionRankingEntry(BaseModel):
    user_id: str
    name: str
    username: Optional[str] = None
    image: Optional[str] = None
    correct_predictions: int
    total_predictions: int
    accuracy: float             # percentage, 0–100
    region_rank: int


class RegionRanking(BaseModel):
    region: str
    top_users: list[RegionRankingEntry]


class UserRankResponse(BaseModel):
    """Cached rank as shown on a user's own profile."""
    user_id: str
    selected_region: Optional[str] = None
    region_rank: Optional[int] = None
    correct_predictions: int = 0
    total_predictions: int = 0
    accuracy: float = 0.0


class RecalculateResponse(BaseModel):
    region: str
    ranked: int


class LedgerEntryResponse(BaseModel):
    id: str
    user_id: str
    type: str
    amount: int
    reason: str
    related_id: Optional[str] = None
    related_type: Optional[str] = None
    level_before: int
    level_after: int
    created_at: datetime


class WeeklyLeaderboardEntry(BaseModel):
    user_id: str
    username: Optional[str] = None
    name: Optional[str] = None
    image: Optional[str] = None
    total_seeds: int
    level: int
    rank: int


class LevelInfoResponse(BaseModel):
    total_seeds: int
    level: int
    seeds_to_next_level: int
    seeds_for_current_level: int
