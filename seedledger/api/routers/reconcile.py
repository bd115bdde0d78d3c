"""
Reconciliation API Endpoints.

POST /reconcile/run    : repair resolved-but-unledgered predictions
GET  /reconcile/status : last run and current consistency
"""

from fastapi import APIRouter, Depends

from seedledger.schemas.reconcile import (
    ReconcileRequest,
    ReconcileResult,
    ReconcileStatusResponse,
)
from seedledger.services.registry import ServiceRegistry, get_services


router = APIRouter(prefix="/reconcile", tags=["reconcile"])


@router.post(
    "/run",
    response_model=ReconcileResult,
    summary="Run reconciliation",
    description="Find resolved predictions without a ledger entry and apply their seeds.",
)
async def run_reconcile(
    body: ReconcileRequest | None = None,
    services: ServiceRegistry = Depends(get_services),
):
    limit = body.limit if body else ReconcileRequest().limit
    return await services.reconcile.run(services.session_factory, limit=limit)


@router.get(
    "/status",
    response_model=ReconcileStatusResponse,
    summary="Reconciliation status",
)
async def reconcile_status(services: ServiceRegistry = Depends(get_services)):
    async with services.session() as session:
        return await services.reconcile.get_status(session)
