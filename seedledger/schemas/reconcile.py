"""Reconciliation schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ReconcileRequest(BaseModel):
    """Request body for POST /reconcile/run."""

    limit: int = Field(default=500, ge=1, le=5000, description="Maximum predictions to repair in one run")


class ReconcileResult(BaseModel):
    """Result of a reconcile run."""

    reconcile_id: str
    total_resolved: int
    total_ledgered: int
    missing_count: int
    repaired_count: int
    failed_count: int
    status: str  # completed, partial, failed
    errors: list[dict] = Field(default_factory=list)
    started_at: datetime
    completed_at: Optional[datetime] = None


class ReconcileStatusResponse(BaseModel):
    """Last reconcile run and whether the ledger currently covers every resolved prediction."""

    last_run: Optional[ReconcileResult] = None
    missing_count: int
    is_consistent: bool
