"""
SeedLedger: settlement and regional ranking engine.

Architecture:
    seedledger/
    ├── api/             # FastAPI routers (HTTP layer)
    ├── db/              # SQLAlchemy models and engine
    ├── engine/          # Pure arithmetic: scoring rules, leveling curve
    ├── middleware/      # Error handling, request context
    ├── schemas/         # Enums and Pydantic request/response models
    └── services/        # Settlement, ledger, rankings, reconcile, scheduler

Data Flow:
    Resolution → Settlement Engine → Scoring Rules → Ledger Writer
    → Region Recompute Queue → Ranking Recalculator

Version: 1.0.0
"""

__version__ = "1.0.0"
