"""
Test fixtures for SeedLedger tests.

Provides:
- A fresh SQLite database per test (file-backed, so concurrent sessions get
  their own connections just like against PostgreSQL)
- Session factory and a plain session
- Factories for users, decisions (with or without resolution) and predictions
- A service registry bound to the test database
- An in-memory Redis double for the ranking cache
"""

import fnmatch
import uuid
from datetime import datetime, timedelta
from typing import AsyncGenerator, Optional
from unittest.mock import patch

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from seedledger.db.engine import Base
from seedledger.db.models import (  # noqa: F401
    Decision,
    Prediction,
    ReconcileLog,
    Resolution,
    SeedsTransaction,
    User,
)
from seedledger.engine.scoring import ScoringRules
from seedledger.services.recompute_queue import RegionRecomputeQueue
from seedledger.services.registry import ServiceRegistry
from seedledger.services.settlement import SettlementEngine

COMPETITION = "municipales_2026"


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Create a test database engine with all tables."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'seedledger_test.db'}", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    """Create a session factory bound to the test engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide a DB session for reads and assertions."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ── Data Factories ───────────────────────────────────────────────────────


@pytest.fixture
def make_user(session_factory):
    """Factory: insert a user and return it."""

    async def _make(
        name: Optional[str] = "Test User",
        balance: int = 0,
        region: Optional[str] = None,
        correct: int = 0,
        total: int = 0,
        **kwargs,
    ) -> User:
        async with session_factory() as session:
            user = User(
                id=uuid.uuid4(),
                name=name,
                email=kwargs.pop("email", f"user-{uuid.uuid4().hex[:8]}@test.fr"),
                seeds_balance=balance,
                selected_region=region,
                correct_predictions=correct,
                total_predictions=total,
                **kwargs,
            )
            session.add(user)
            await session.commit()
            return user

    return _make


@pytest.fixture
def make_decision(session_factory):
    """Factory: insert a decision, optionally resolved."""

    async def _make(
        issue: Optional[str] = None,
        confidence: int = 100,
        competition: Optional[str] = None,
        resolved_at: Optional[datetime] = None,
    ) -> Decision:
        async with session_factory() as session:
            decision = Decision(id=uuid.uuid4(), title="Test decision", competition=competition)
            session.add(decision)
            await session.flush()
            if issue is not None:
                session.add(
                    Resolution(
                        decision_id=decision.id,
                        issue=issue,
                        confidence=confidence,
                        resolved_at=resolved_at or datetime.utcnow(),
                    )
                )
            await session.commit()
            return decision

    return _make


@pytest.fixture
def make_prediction(session_factory):
    """Factory: insert a pending prediction."""

    async def _make(user: User, decision: Decision, issue: str, stake: int = 10, **kwargs) -> Prediction:
        async with session_factory() as session:
            prediction = Prediction(
                id=uuid.uuid4(),
                user_id=user.id,
                decision_id=decision.id,
                issue=issue,
                stake=stake,
                created_at=kwargs.pop("created_at", datetime.utcnow() - timedelta(minutes=5)),
                **kwargs,
            )
            session.add(prediction)
            await session.commit()
            return prediction

    return _make


# ── Services ─────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def recompute_queue(session_factory):
    """Region queue with no debounce delay, closed after the test."""
    queue = RegionRecomputeQueue(session_factory, debounce_seconds=0)
    yield queue
    await queue.close()


@pytest.fixture
def settlement(session_factory, recompute_queue):
    return SettlementEngine(
        session_factory,
        rules=ScoringRules(),
        recompute_queue=recompute_queue,
        competition_tag=COMPETITION,
        concurrency=4,
    )


@pytest_asyncio.fixture
async def services(session_factory):
    """Service registry bound to the test database."""
    registry = ServiceRegistry(session_factory=session_factory)
    yield registry
    await registry.close()


# ── Cache ────────────────────────────────────────────────────────────────


class InMemoryRedis:
    """The slice of redis.asyncio used by seedledger.services.cache."""

    def __init__(self):
        self.store: dict[str, str] = {}

    async def ping(self):
        return True

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value
        return True

    async def scan_iter(self, match="*"):
        for key in list(self.store):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def delete(self, *keys):
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    async def aclose(self):
        pass


@pytest.fixture
def redis_cache():
    """Install an in-memory Redis as the ranking cache backend."""
    fake = InMemoryRedis()
    with patch("seedledger.services.cache._redis", fake):
        yield fake
