"""In-process APScheduler for the monthly referral discount run.

Every API instance starts the scheduler; a PostgreSQL advisory lock makes
sure only one of them does the work on a given tick.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import text

from app.config import settings
from app.core.database import direct_session_maker

logger = logging.getLogger(__name__)

# One advisory lock id per job
REFERRAL_DISCOUNT_LOCK_ID = 731401

REFERRAL_DISCOUNT_JOB_ID = "referral_discount"

# A missed monthly tick (deploy, restart) still runs if the process is back within a day
MISFIRE_GRACE_SECONDS = 24 * 60 * 60


@asynccontextmanager
async def advisory_lock(lock_id: int) -> AsyncIterator[bool]:
    """
    Try to take a session-level advisory lock; yields whether it was acquired.

    Uses the direct connection: behind the transaction pooler the lock and
    unlock could land on different backends.
    """
    async with direct_session_maker() as session:
        result = await session.execute(
            text("SELECT pg_try_advisory_lock(:lock_id)"),
            {"lock_id": lock_id},
        )
        acquired = result.scalar()

        if not acquired:
            yield False
            return

        try:
            yield True
        finally:
            await session.execute(
                text("SELECT pg_advisory_unlock(:lock_id)"),
                {"lock_id": lock_id},
            )
            await session.commit()


async def run_referral_discounts() -> dict[str, Any] | None:
    """
    Execute the monthly referral discount job with advisory lock protection.

    Returns the report dict if executed, None if skipped (lock held by another
    instance, Stripe not configured, or the run failed).
    """
    if not settings.stripe_enabled:
        logger.info("[scheduler] Referral-discount: skipped (Stripe not configured)")
        return None

    async with advisory_lock(REFERRAL_DISCOUNT_LOCK_ID) as acquired:
        if not acquired:
            logger.info("[scheduler] Referral-discount: skipped (another instance is running)")
            return None

        logger.info("[scheduler] Referral-discount: starting")

        try:
            from app.services.billing.factory import get_referral_processor

            report = await get_referral_processor().run_scheduled()

            logger.info(
                f"[scheduler] Referral-discount: completed "
                f"({report.success_count} applied, "
                f"{report.failure_count} failed or skipped, "
                f"{report.duration_seconds}s)"
            )
            return asdict(report)

        except Exception as e:
            logger.exception(f"[scheduler] Referral-discount: failed with error: {e}")
            return None


JOBS = {REFERRAL_DISCOUNT_JOB_ID: run_referral_discounts}


class Scheduler:
    """Manages the APScheduler instance and job registration."""

    def __init__(self) -> None:
        self._scheduler: AsyncIOScheduler | None = None

    def start(self) -> None:
        """Start the scheduler and register jobs."""
        if not settings.scheduler_enabled:
            logger.info("[scheduler] Disabled via SCHEDULER_ENABLED=false")
            return

        self._scheduler = AsyncIOScheduler(timezone="UTC")

        # Referral discounts: monthly on the configured day/hour (UTC)
        self._scheduler.add_job(
            run_referral_discounts,
            trigger=CronTrigger(
                day=settings.referral_discount_day,
                hour=settings.referral_discount_hour,
                minute=0,
                timezone="UTC",
            ),
            id=REFERRAL_DISCOUNT_JOB_ID,
            name="Monthly Referral Discounts",
            replace_existing=True,
            coalesce=True,
            misfire_grace_time=MISFIRE_GRACE_SECONDS,
        )

        self._scheduler.start()
        logger.info(
            f"[scheduler] Started with referral-discount on day "
            f"{settings.referral_discount_day} at "
            f"{settings.referral_discount_hour:02d}:00 UTC"
        )

    def stop(self) -> None:
        """Gracefully shut down the scheduler."""
        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("[scheduler] Stopped")

    async def trigger_now(self, job_id: str) -> dict[str, Any] | None:
        """Run a registered job right away. Unknown job ids return None."""
        job = JOBS.get(job_id)
        if job is None:
            logger.warning(f"[scheduler] Unknown job: {job_id}")
            return None
        return await job()


scheduler = Scheduler()
