"""
Tests for the Region Recompute Queue.

Covers:
- Triggers within the debounce window fold into one recompute
- Different regions recompute independently
- drain() runs waiting regions immediately
- A failing recompute is counted and does not stop the worker
"""

import asyncio

import pytest
import pytest_asyncio

from seedledger.db.models import User
from seedledger.services.rankings import RankingRecalculator
from seedledger.services.recompute_queue import RegionRecomputeQueue


class CountingRecalculator(RankingRecalculator):
    def __init__(self, fail_for: set[str] | None = None):
        self.calls: list[str] = []
        self.fail_for = fail_for or set()

    async def recalculate_region(self, session, region):
        self.calls.append(region)
        if region in self.fail_for:
            raise RuntimeError(f"boom: {region}")
        return await super().recalculate_region(session, region)


@pytest_asyncio.fixture
async def make_queue(session_factory):
    queues = []

    def _make(recalculator, debounce_seconds=0.05):
        queue = RegionRecomputeQueue(
            session_factory, recalculator=recalculator, debounce_seconds=debounce_seconds
        )
        queues.append(queue)
        return queue

    yield _make
    for queue in queues:
        await queue.close()


@pytest.mark.asyncio
async def test_burst_for_one_region_coalesces(make_queue):
    recalculator = CountingRecalculator()
    queue = make_queue(recalculator)

    for _ in range(10):
        queue.enqueue("Bretagne")
    await asyncio.sleep(0.2)

    assert recalculator.calls == ["Bretagne"]
    assert queue.metrics["enqueued"] == 10
    assert queue.metrics["coalesced"] == 9
    assert queue.metrics["executed"] == 1


@pytest.mark.asyncio
async def test_regions_run_independently(make_queue):
    recalculator = CountingRecalculator()
    queue = make_queue(recalculator)

    queue.enqueue("Bretagne")
    queue.enqueue("Corse")
    queue.enqueue("Bretagne")
    await asyncio.sleep(0.2)

    assert sorted(recalculator.calls) == ["Bretagne", "Corse"]
    assert queue.pending_regions == []


@pytest.mark.asyncio
async def test_trigger_after_run_schedules_again(make_queue):
    recalculator = CountingRecalculator()
    queue = make_queue(recalculator)

    queue.enqueue("Normandie")
    await asyncio.sleep(0.2)
    queue.enqueue("Normandie")
    await asyncio.sleep(0.2)

    assert recalculator.calls == ["Normandie", "Normandie"]


@pytest.mark.asyncio
async def test_drain_runs_pending_now(make_queue, session_factory, make_user):
    user = await make_user(region="Occitanie", correct=1, total=1)
    recalculator = CountingRecalculator()
    queue = make_queue(recalculator, debounce_seconds=60)

    queue.enqueue("Occitanie")
    assert queue.pending_regions == ["Occitanie"]
    await queue.drain()

    assert recalculator.calls == ["Occitanie"]
    assert queue.pending_regions == []
    async with session_factory() as session:
        assert (await session.get(User, user.id)).region_rank == 1


@pytest.mark.asyncio
async def test_failure_is_counted_and_worker_continues(make_queue):
    recalculator = CountingRecalculator(fail_for={"Corse"})
    queue = make_queue(recalculator, debounce_seconds=0)

    queue.enqueue("Corse")
    queue.enqueue("Bretagne")
    await asyncio.sleep(0.2)

    assert sorted(recalculator.calls) == ["Bretagne", "Corse"]
    assert queue.metrics["failed"] == 1
    assert queue.metrics["executed"] == 1


@pytest.mark.asyncio
async def test_close_flushes_waiting_regions(session_factory):
    recalculator = CountingRecalculator()
    queue = RegionRecomputeQueue(session_factory, recalculator=recalculator, debounce_seconds=60)

    queue.enqueue("Grand Est")
    await queue.close()

    assert recalculator.calls == ["Grand Est"]
