"""
SeedLedger SQLAlchemy Models.

Decisions and resolutions are owned by upstream collaborators and only read
here. Predictions are flipped exactly once, users carry the mutable aggregate
state, and seeds_transactions is the append-only audit trail.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import Mapped, mapped_column

from seedledger.db.engine import Base
from seedledger.schemas.enums import PredictionStatus


# JSONB on PostgreSQL, JSON elsewhere
JSONDocument = JSON().with_variant(postgresql.JSONB(), "postgresql")


def _genuuid():
    return uuid.uuid4()


# ──────────────────────────────────────────────────────────────────────────────
# 1. Upstream records (read-only to settlement)
# ──────────────────────────────────────────────────────────────────────────────


class Decision(Base):
    """A real-world decision users can anticipate."""

    __tablename__ = "decisions"
    __table_args__ = (
        Index("ix_decisions_competition", "competition"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_genuuid)
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    # e.g. "municipales_2026"; null for decisions outside any competition
    competition: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class Resolution(Base):
    """The authoritative outcome of a decision."""

    __tablename__ = "resolutions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_genuuid)
    decision_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("decisions.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    issue: Mapped[str] = mapped_column(String(20), nullable=False)
    confidence: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    resolved_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class User(Base):
    """User aggregate state: balance, level and the regional competition record."""

    __tablename__ = "users"
    __table_args__ = (
        Index("ix_users_selected_region", "selected_region"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_genuuid)
    name: Mapped[Optional[str]] = mapped_column(String(200))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    username: Mapped[Optional[str]] = mapped_column(String(100))
    image: Mapped[Optional[str]] = mapped_column(String(500))

    seeds_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    seeds_to_next_level: Mapped[int] = mapped_column(Integer, nullable=False, default=100)

    # Regional competition
    selected_region: Mapped[Optional[str]] = mapped_column(String(100))
    correct_predictions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_predictions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    region_rank: Mapped[Optional[int]] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


# ──────────────────────────────────────────────────────────────────────────────
# 2. Settlement
# ──────────────────────────────────────────────────────────────────────────────


class Prediction(Base):
    """
    A user's staked anticipation on a decision.

    status is a one-way latch: pending → resolved. The transition is only
    ever written by a conditional UPDATE guarded on status = 'pending'.
    """

    __tablename__ = "predictions"
    __table_args__ = (
        Index("ix_predictions_decision_status", "decision_id", "status"),
        Index("ix_predictions_user_id", "user_id"),
        CheckConstraint("stake > 0", name="ck_predictions_stake_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_genuuid)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    decision_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("decisions.id", ondelete="CASCADE"), nullable=False
    )
    issue: Mapped[str] = mapped_column(String(20), nullable=False)
    stake: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PredictionStatus.PENDING.value
    )
    result: Mapped[Optional[str]] = mapped_column(String(10))
    seeds_earned: Mapped[Optional[int]] = mapped_column(Integer)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class SeedsTransaction(Base):
    """
    Immutable ledger entry: one per balance mutation.

    related_id is unique so a prediction can never be ledgered twice, even by
    settlement and reconcile racing each other.
    """

    __tablename__ = "seeds_transactions"
    __table_args__ = (
        Index("ix_seeds_transactions_user_created", "user_id", "created_at"),
        Index("ix_seeds_transactions_created_at", "created_at"),
        CheckConstraint("amount > 0", name="ck_seeds_transactions_amount_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_genuuid)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    type: Mapped[str] = mapped_column(String(10), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    related_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, unique=True)
    related_type: Mapped[Optional[str]] = mapped_column(String(32))
    level_before: Mapped[int] = mapped_column(Integer, nullable=False)
    level_after: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class ReconcileLog(Base):
    """
    Log of reconciliation runs.

    Each run counts resolved predictions, ledgered predictions and how many
    resolved-but-unledgered predictions were repaired.
    """

    __tablename__ = "reconcile_log"
    __table_args__ = (
        Index("ix_reconcile_log_started_at", "started_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_genuuid)
    reconcile_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)

    total_resolved: Mapped[int] = mapped_column(Integer, default=0)
    total_ledgered: Mapped[int] = mapped_column(Integer, default=0)
    missing_count: Mapped[int] = mapped_column(Integer, default=0)
    repaired_count: Mapped[int] = mapped_column(Integer, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, default=0)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="running")
    # running → completed → partial → failed
    errors: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    started_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
