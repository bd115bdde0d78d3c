"""
Tests for the HTTP API.

Covers:
- POST /api/v1/settlements/decisions/{decision_id}
- POST /api/v1/settlements/run
- GET  /api/v1/settlements/metrics
- GET  /api/v1/rankings/regions[/{region}]
- POST /api/v1/rankings/regions/{region}/recalculate
- GET  /api/v1/rankings/users/{user_id}
- GET  /api/v1/ledger/users/{user_id}
- GET  /api/v1/ledger/weekly
- GET  /api/v1/levels/{total_seeds}
- POST /reconcile/run, GET /reconcile/status
- GET  /health
"""

import uuid
from datetime import datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from seedledger.db.models import User
from seedledger.main import app
from seedledger.services.registry import get_services


@pytest_asyncio.fixture
async def client(services):
    """Async test client wired to the test database through the service registry."""
    services.recompute_queue.debounce_seconds = 0
    app.dependency_overrides[get_services] = lambda: services
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


# ── Health ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["service"] == "seedledger"


@pytest.mark.asyncio
async def test_request_id_header(client):
    resp = await client.get("/health", headers={"X-Request-ID": "req-123"})
    assert resp.headers.get("X-Request-ID") == "req-123"


# ── Settlements ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_settle_decision(client, session_factory, make_user, make_decision, make_prediction):
    winner = await make_user(balance=0)
    loser = await make_user(balance=50)
    decision = await make_decision(issue="works")
    await make_prediction(winner, decision, "works", stake=10)
    await make_prediction(loser, decision, "fails", stake=10)

    resp = await client.post(f"/api/v1/settlements/decisions/{decision.id}")

    assert resp.status_code == 200
    body = resp.json()
    assert body["decision_id"] == str(decision.id)
    assert body["processed"] == 2
    assert body["resolved"] == 2
    assert body["skipped"] == 0
    assert body["errors"] == []
    assert body["error_count"] == 0

    async with session_factory() as session:
        assert (await session.get(User, winner.id)).seeds_balance == 23
        assert (await session.get(User, loser.id)).seeds_balance == 45


@pytest.mark.asyncio
async def test_settle_decision_twice_pays_once(client, session_factory, make_user, make_decision, make_prediction):
    user = await make_user(balance=0)
    decision = await make_decision(issue="works")
    await make_prediction(user, decision, "works", stake=10)

    first = await client.post(f"/api/v1/settlements/decisions/{decision.id}")
    second = await client.post(f"/api/v1/settlements/decisions/{decision.id}")

    assert first.json()["resolved"] == 1
    assert second.json()["processed"] == 0
    assert second.json()["resolved"] == 0
    async with session_factory() as session:
        assert (await session.get(User, user.id)).seeds_balance == 23


@pytest.mark.asyncio
async def test_settle_unresolved_decision_reports_error(client, make_decision):
    decision = await make_decision()

    resp = await client.post(f"/api/v1/settlements/decisions/{decision.id}")

    assert resp.status_code == 200
    errors = resp.json()["errors"]
    assert len(errors) == 1
    assert errors[0]["kind"] == "resolution_not_found"
    assert resp.json()["error_count"] == 1


@pytest.mark.asyncio
async def test_settle_invalid_decision_id(client):
    resp = await client.post("/api/v1/settlements/decisions/not-a-uuid")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "E1001"


@pytest.mark.asyncio
async def test_settle_batch(client, make_user, make_decision, make_prediction):
    user = await make_user()
    for _ in range(3):
        decision = await make_decision(issue="partial")
        await make_prediction(user, decision, "partial", stake=20)
    await make_decision(issue="works")  # nothing pending

    resp = await client.post("/api/v1/settlements/run")

    assert resp.status_code == 200
    body = resp.json()
    assert body["decisions"] == 3
    assert body["resolved"] == 3
    assert body["error_count"] == 0


@pytest.mark.asyncio
async def test_settle_batch_with_limit(client, make_user, make_decision, make_prediction):
    user = await make_user()
    for _ in range(3):
        decision = await make_decision(issue="works")
        await make_prediction(user, decision, "works")

    resp = await client.post("/api/v1/settlements/run", json={"limit": 2})

    assert resp.json()["decisions"] == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("limit", [0, 501])
async def test_settle_batch_limit_out_of_range(client, limit):
    resp = await client.post("/api/v1/settlements/run", json={"limit": limit})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_settlement_metrics(client):
    resp = await client.get("/api/v1/settlements/metrics")
    assert resp.status_code == 200
    body = resp.json()
    assert "predictions_resolved" in body["settlement"]
    assert "coalesced" in body["ranking_queue"]


# ── Rankings ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_region_ranking(client, make_user):
    top = await make_user(name="Top", region="Bretagne", correct=4, total=5)
    await make_user(name="Second", region="Bretagne", correct=1, total=5)

    resp = await client.get("/api/v1/rankings/regions/Bretagne", params={"limit": 1})

    assert resp.status_code == 200
    body = resp.json()
    assert len(body) == 1
    assert body[0]["user_id"] == str(top.id)
    assert body[0]["region_rank"] == 1
    assert body[0]["accuracy"] == 80.0


@pytest.mark.asyncio
@pytest.mark.parametrize("limit", [0, 101])
async def test_region_ranking_limit_out_of_range(client, limit):
    resp = await client.get("/api/v1/rankings/regions/Bretagne", params={"limit": limit})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_all_regions(client, make_user):
    await make_user(region="Corse", correct=1, total=1)
    await make_user(region="Normandie", correct=3, total=6)

    resp = await client.get("/api/v1/rankings/regions")

    assert resp.status_code == 200
    assert [r["region"] for r in resp.json()] == ["Normandie", "Corse"]


@pytest.mark.asyncio
async def test_recalculate_region(client, session_factory, make_user):
    user = await make_user(region="Occitanie", correct=2, total=3)

    resp = await client.post("/api/v1/rankings/regions/Occitanie/recalculate")

    assert resp.status_code == 200
    assert resp.json() == {"region": "Occitanie", "ranked": 1}
    async with session_factory() as session:
        assert (await session.get(User, user.id)).region_rank == 1


@pytest.mark.asyncio
async def test_user_rank(client, make_user):
    user = await make_user(region="Corse", correct=1, total=2, region_rank=3)

    resp = await client.get(f"/api/v1/rankings/users/{user.id}")

    assert resp.status_code == 200
    body = resp.json()
    assert body["region_rank"] == 3
    assert body["accuracy"] == 50.0


@pytest.mark.asyncio
async def test_user_rank_not_found(client):
    resp = await client.get(f"/api/v1/rankings/users/{uuid.uuid4()}")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "E4001"


@pytest.mark.asyncio
async def test_competition_settlement_updates_ranking(
    client, services, make_user, make_decision, make_prediction
):
    right = await make_user(region="Grand Est")
    wrong = await make_user(region="Grand Est")
    decision = await make_decision(issue="works", competition="municipales_2026")
    await make_prediction(right, decision, "works")
    await make_prediction(wrong, decision, "fails")

    await client.post(f"/api/v1/settlements/decisions/{decision.id}")
    await services.recompute_queue.drain()

    ranking = (await client.get("/api/v1/rankings/regions/Grand Est")).json()
    assert [e["user_id"] for e in ranking] == [str(right.id), str(wrong.id)]
    rank = (await client.get(f"/api/v1/rankings/users/{wrong.id}")).json()
    assert rank["region_rank"] == 2
    assert rank["total_predictions"] == 1


# ── Ledger & levels ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_user_ledger(client, make_user, make_decision, make_prediction):
    user = await make_user()
    decision = await make_decision(issue="works")
    prediction = await make_prediction(user, decision, "works", stake=10)
    await client.post(f"/api/v1/settlements/decisions/{decision.id}")

    resp = await client.get(f"/api/v1/ledger/users/{user.id}")

    assert resp.status_code == 200
    entries = resp.json()
    assert len(entries) == 1
    assert entries[0]["amount"] == 23
    assert entries[0]["type"] == "earned"
    assert entries[0]["related_id"] == str(prediction.id)


@pytest.mark.asyncio
async def test_weekly_leaderboard(client, make_user, make_decision, make_prediction):
    user = await make_user(username="graine")
    decision = await make_decision(issue="works", resolved_at=datetime.utcnow())
    await make_prediction(user, decision, "works", stake=10)
    await client.post(f"/api/v1/settlements/decisions/{decision.id}")

    resp = await client.get("/api/v1/ledger/weekly")

    assert resp.status_code == 200
    body = resp.json()
    assert body[0]["username"] == "graine"
    assert body[0]["total_seeds"] == 23
    assert body[0]["rank"] == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "total,level,to_next",
    [(0, 1, 100), (250, 2, 150), (400, 3, 500)],
)
async def test_level_lookup(client, total, level, to_next):
    resp = await client.get(f"/api/v1/levels/{total}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["level"] == level
    assert body["seeds_to_next_level"] == to_next


# ── Reconcile ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_reconcile_run_and_status(client, make_user, make_decision, make_prediction):
    user = await make_user()
    decision = await make_decision(issue="works")
    await make_prediction(user, decision, "works", status="resolved", result="won", seeds_earned=15)

    status = (await client.get("/reconcile/status")).json()
    assert status["is_consistent"] is False
    assert status["missing_count"] == 1

    resp = await client.post("/reconcile/run", json={"limit": 10})
    assert resp.status_code == 200
    assert resp.json()["repaired_count"] == 1

    status = (await client.get("/reconcile/status")).json()
    assert status["is_consistent"] is True
    assert status["last_run"]["status"] == "completed"


@pytest.mark.asyncio
async def test_reconcile_limit_validated(client):
    resp = await client.post("/reconcile/run", json={"limit": 0})
    assert resp.status_code == 422
