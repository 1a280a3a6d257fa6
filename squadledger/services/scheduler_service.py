"""Background scheduler for the time-driven sweeps.

Runs as an asyncio task during the application lifespan. Each cycle expires
stale pending pledges and closes audit windows whose challenges were never
resolved. Both sweeps are idempotent, so overlapping or repeated cycles are
harmless.
"""

import asyncio

from squadledger.config import get_settings
from squadledger.database import get_db_session
from squadledger.logging_config import get_logger
from squadledger.services.pledge_service import PledgeService
from squadledger.services.task_service import TaskService

logger = get_logger(__name__)


async def run_sweep_cycle() -> dict[str, dict[str, int]]:
    """Single cycle: run every sweep in its own session."""
    results: dict[str, dict[str, int]] = {}

    async with get_db_session() as session:
        try:
            results["pledge_expiry"] = await PledgeService(session).expire_stale_pledges()
        except Exception:
            logger.exception("pledge_expiry_sweep_failed")

    async with get_db_session() as session:
        try:
            results["audit_close"] = await TaskService(session).close_elapsed_audits()
        except Exception:
            logger.exception("audit_close_sweep_failed")

    return results


async def scheduler_loop(stop_event: asyncio.Event):
    """Main scheduler loop. Runs until stop_event is set."""
    interval = get_settings().scheduler_interval_seconds
    logger.info("scheduler_started", interval_seconds=interval)

    while not stop_event.is_set():
        try:
            await run_sweep_cycle()
        except Exception:
            logger.exception("scheduler_cycle_error")

        # Wait for the interval or until stopped
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
            break
        except asyncio.TimeoutError:
            pass

    logger.info("scheduler_stopped")
