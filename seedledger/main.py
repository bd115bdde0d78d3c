"""
SeedLedger: FastAPI Application.

Run: uvicorn seedledger.main:app --host 0.0.0.0 --port 8002

  - POST /api/v1/settlements/decisions/{id}   ← resolution subsystem calls this
  - POST /api/v1/settlements/run
  - GET  /api/v1/settlements/metrics
  - GET  /api/v1/rankings/regions[/{region}]
  - GET  /api/v1/rankings/users/{user_id}
  - GET  /api/v1/ledger/users/{user_id}, /api/v1/ledger/weekly
  - GET  /api/v1/levels/{total_seeds}
  - POST /reconcile/run, GET /reconcile/status
  - GET  /health
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from seedledger.api.routers.ledger import router as ledger_router
from seedledger.api.routers.rankings import router as rankings_router
from seedledger.api.routers.reconcile import router as reconcile_router
from seedledger.api.routers.settlements import router as settlements_router
from seedledger.config import settings
from seedledger.db.engine import close_db, init_db
from seedledger.exceptions import SeedLedgerError, seedledger_exception_handler
from seedledger.logging_config import configure_logging
from seedledger.middleware.request_context import RequestContextMiddleware
from seedledger.services.cache import close_redis
from seedledger.services.registry import close_services

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    configure_logging()
    logger.info("seedledger_starting", version=settings.app_version)
    await init_db()
    yield
    await close_services()
    await close_redis()
    await close_db()
    logger.info("seedledger_shutdown")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="SeedLedger",
        description=(
            "Settlement and regional ranking engine for seeds staked on "
            "decision outcomes."
        ),
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_tags=[
            {"name": "health", "description": "Liveness probe"},
            {"name": "settlements", "description": "Settle predictions against resolutions"},
            {"name": "rankings", "description": "Regional leaderboards"},
            {"name": "ledger", "description": "Seeds history and levels"},
            {"name": "reconcile", "description": "Ledger ↔ prediction reconciliation"},
        ],
    )

    # ── Middleware ────────────────────────────────────────────────────
    app.add_middleware(RequestContextMiddleware)

    app.add_exception_handler(SeedLedgerError, seedledger_exception_handler)

    # ── Routes ────────────────────────────────────────────────────────
    app.include_router(settlements_router)
    app.include_router(rankings_router)
    app.include_router(ledger_router)
    app.include_router(reconcile_router)

    @app.get("/health", tags=["health"])
    async def health():
        """Liveness probe. Does not check dependencies."""
        return {
            "status": "ok",
            "version": settings.app_version,
            "service": "seedledger",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "seedledger.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
