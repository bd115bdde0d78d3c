"""
Settlement Schemas.

Results returned by the settlement entry points: aggregate counters plus
one SettlementError per failed item, with enough context for an operator.
"""

from typing import Optional

from pydantic import BaseModel, Field, computed_field


class SettlementError(BaseModel):
    """One failed decision or prediction."""
    item_id: str
    kind: str                   # resolution_not_found, user_not_found, ...
    message: str
    decision_id: Optional[str] = None


class SettlementResult(BaseModel):
    """Outcome of settling one decision."""
    decision_id: str
    processed: int = 0          # pending predictions found
    resolved: int = 0           # predictions this call actually settled
    skipped: int = 0            # lost the race to a concurrent settler
    errors: list[SettlementError] = Field(default_factory=list)

    @computed_field
    @property
    def error_count(self) -> int:
        return len(self.errors)


class BatchSettlementResult(BaseModel):
    """Outcome of settling every resolved decision in one batch."""
    decisions: int = 0
    processed: int = 0
    resolved: int = 0
    skipped: int = 0
    errors: list[SettlementError] = Field(default_factory=list)

    @computed_field
    @property
    def error_count(self) -> int:
        return len(self.errors)


class SettleBatchRequest(BaseModel):
    """Request body for POST /api/v1/settlements/run."""
    limit: Optional[int] = Field(default=None, ge=1, le=500, description="Maximum decisions to settle")
