"""
Scheduler Entry Point: runs in a separate container.

Usage:
    python -m seedledger.scheduler_main

This does NOT run a web server. It runs the APScheduler background loop
for settlement and ledger reconciliation.
"""

import asyncio
import signal

import structlog

from seedledger.config import settings
from seedledger.db.engine import close_db, get_session_factory, init_db
from seedledger.logging_config import configure_logging
from seedledger.services.registry import ServiceRegistry
from seedledger.services.scheduler import SettlementScheduler

logger = structlog.get_logger(__name__)


async def main():
    """Initialize and run the scheduler."""
    configure_logging()
    logger.info("scheduler_starting", version=settings.app_version)

    await init_db()
    services = ServiceRegistry(session_factory=get_session_factory())
    scheduler = SettlementScheduler(services)

    # Catch up on anything resolved while we were down
    logger.info("running_initial_settlement")
    await scheduler.settle_resolved()

    scheduler.start()

    # Graceful shutdown handling
    stop_event = asyncio.Event()

    def _handle_signal(signum, frame):
        logger.info("shutdown_signal_received", signal=signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info("scheduler_running", msg="Waiting for jobs... Ctrl+C to stop.")

    await stop_event.wait()

    scheduler.stop()
    await services.close()
    await close_db()
    logger.info("scheduler_shutdown_complete")


def run():
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
