"""
Scheduled exclusion maintenance.

The incremental hide path never computes empty-entity exclusions and a
deferred recompute after an unhide can fail silently, so every user's set is
rebuilt once a night as a safety net.
"""

import asyncio
import logging
import time
from datetime import timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from library_visibility.config import get_settings
from library_visibility.services.exclusion_service import get_exclusion_service

logger = logging.getLogger(__name__)
settings = get_settings()

scheduler = AsyncIOScheduler(
    timezone=timezone.utc,
    job_defaults={
        # Run a missed nightly job when the host comes back instead of skipping it
        "misfire_grace_time": 60 * 60,
        "coalesce": True,
        "max_instances": 1,
    },
)

NIGHTLY_JOB_ID = "nightly_exclusion_recompute"


async def run_nightly_recompute():
    """Rebuild exclusions for every user."""
    start_time = time.monotonic()
    logger.info("Starting nightly exclusion recompute")

    try:
        outcome = await get_exclusion_service().recompute_all_users()
    except Exception as e:
        logger.error(f"Nightly exclusion recompute failed: {e}", exc_info=True)
        return

    elapsed = time.monotonic() - start_time
    logger.info(
        f"Nightly exclusion recompute complete in {elapsed:.1f}s: "
        f"{outcome.success} succeeded, {outcome.failed} failed"
    )


def start_scheduler():
    """Register jobs and start the background scheduler."""
    if not settings.recompute_all_enabled:
        logger.info("Nightly exclusion recompute disabled (RECOMPUTE_ALL_ENABLED=false)")
        return

    scheduler.add_job(
        run_nightly_recompute,
        CronTrigger(hour=settings.recompute_all_hour, minute=settings.recompute_all_minute, timezone="UTC"),
        id=NIGHTLY_JOB_ID,
        name="Nightly exclusion recompute",
        replace_existing=True,
    )

    scheduler.start()
    logger.info(
        f"Scheduler started - exclusion recompute at "
        f"{settings.recompute_all_hour:02d}:{settings.recompute_all_minute:02d} UTC"
    )


def stop_scheduler():
    """Stop the scheduler if it was started."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")


def next_run_time() -> str | None:
    job = scheduler.get_job(NIGHTLY_JOB_ID)
    return job.next_run_time.isoformat() if job and job.next_run_time else None


if __name__ == "__main__":
    # Run once as a standalone script
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    asyncio.run(run_nightly_recompute())
