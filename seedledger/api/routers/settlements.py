"""
Settlement API Endpoints.

POST /api/v1/settlements/decisions/{decision_id} : settle one decision
POST /api/v1/settlements/run                     : settle a batch of resolved decisions
GET  /api/v1/settlements/metrics                 : in-process counters

Both POST endpoints answer 200 with counters and an error list even when
some predictions failed; only bad parameters produce a 4xx.
"""

from fastapi import APIRouter, Depends

from seedledger.schemas.settlement import (
    BatchSettlementResult,
    SettleBatchRequest,
    SettlementResult,
)
from seedledger.services.registry import ServiceRegistry, get_services
from seedledger.services.settlement import get_settlement_metrics


router = APIRouter(prefix="/api/v1/settlements", tags=["settlements"])


@router.post(
    "/decisions/{decision_id}",
    response_model=SettlementResult,
    summary="Settle one decision",
)
async def settle_decision(
    decision_id: str,
    services: ServiceRegistry = Depends(get_services),
):
    return await services.settlement.settle_decision(decision_id)


@router.post(
    "/run",
    response_model=BatchSettlementResult,
    summary="Settle resolved decisions",
    description="Settle up to `limit` resolved decisions that still have pending predictions.",
)
async def settle_batch(
    body: SettleBatchRequest | None = None,
    services: ServiceRegistry = Depends(get_services),
):
    limit = body.limit if body else None
    return await services.settlement.settle_all_resolved_decisions(limit=limit)


@router.get("/metrics", summary="Settlement counters")
async def settlement_metrics(services: ServiceRegistry = Depends(get_services)):
    return {
        "settlement": get_settlement_metrics(),
        "ranking_queue": services.recompute_queue.metrics,
    }
