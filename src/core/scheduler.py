"""Scheduler for periodic background work (outbox flushes)."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.core.config import settings
from src.core.scheduler_tracker import run_tracked_job
from src.services.garden_service import GardenStateManager


logger = logging.getLogger(__name__)

OUTBOX_FLUSH_JOB = "outbox_flush"

# Global scheduler instance
scheduler = AsyncIOScheduler()


async def flush_outbox(manager: GardenStateManager) -> None:
    """Retry every pending remote mirror.

    Runs on an interval so records written while disconnected, or whose
    mirror failed, eventually reach the remote store.
    """
    result = await manager.flush()
    if result.skipped:
        logger.debug("Outbox flush skipped: not connected")
        return
    logger.info(
        "Outbox flush finished: %d synced, %d unconfirmed, %d failed",
        result.synced,
        result.unconfirmed,
        result.failed,
    )


async def _run_outbox_flush(manager: GardenStateManager) -> None:
    await run_tracked_job(lambda: flush_outbox(manager), OUTBOX_FLUSH_JOB)


def start_scheduler(manager: GardenStateManager) -> None:
    """Start the scheduler and register the outbox job.

    This should be called during FastAPI app startup.
    """
    logger.info("Starting scheduler")

    scheduler.add_job(
        _run_outbox_flush,
        args=[manager],
        trigger=IntervalTrigger(seconds=settings.outbox_flush_interval_seconds),
        id=OUTBOX_FLUSH_JOB,
        name="Flush Sync Outbox",
        replace_existing=True,
    )
    logger.info(f"Scheduled outbox flush job: every {settings.outbox_flush_interval_seconds}s")

    scheduler.start()
    logger.info("Scheduler started")


def stop_scheduler() -> None:
    """Stop the scheduler.

    This should be called during FastAPI app shutdown.
    """
    logger.info("Stopping scheduler")
    if scheduler.running:
        scheduler.shutdown(wait=False)
    logger.info("Scheduler stopped")
