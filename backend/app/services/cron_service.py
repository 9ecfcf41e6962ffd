"""
CronService: periodic reconciliation sweep on an APScheduler AsyncIOScheduler.

The sweep itself is synchronous (SQLAlchemy session + httpx), so each run is
dispatched to the default thread executor.
"""
from __future__ import annotations

import asyncio
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from app.config.settings import get_settings

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "reconciliation_sweep"

_scheduler: AsyncIOScheduler | None = None


def _get_scheduler() -> AsyncIOScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(timezone="UTC")
    return _scheduler


def run_reconciliation_sweep() -> dict[str, int]:
    """One sweep with its own session. Used by the scheduler and by tests."""
    from app.persistence.database import SessionLocal
    from app.providers.payment_provider import get_payment_provider
    from app.services.reconciliation import ReconciliationService

    settings = get_settings()
    with SessionLocal() as db:
        service = ReconciliationService(
            db, get_payment_provider(), batch_size=settings.reconciliation_batch_size
        )
        return service.sync().to_dict()


class CronService:
    """Own the sweep schedule."""

    @staticmethod
    async def start() -> None:
        settings = get_settings()
        interval = settings.reconciliation_interval_seconds
        if not settings.reconciliation_enabled or interval <= 0:
            logger.info("Reconciliation sweep disabled")
            return

        scheduler = _get_scheduler()
        if scheduler.running:
            return
        scheduler.add_job(
            CronService._execute_sweep,
            trigger="interval",
            seconds=interval,
            id=SWEEP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        logger.info("Reconciliation sweep scheduled every %ss", interval)

    @staticmethod
    async def stop() -> None:
        scheduler = _get_scheduler()
        if scheduler.running:
            scheduler.shutdown(wait=False)
            logger.info("CronService scheduler stopped")

    @staticmethod
    def next_run_time():
        scheduler = _get_scheduler()
        job = scheduler.get_job(SWEEP_JOB_ID)
        return job.next_run_time if job else None

    @staticmethod
    async def _execute_sweep() -> None:
        try:
            loop = asyncio.get_running_loop()
            summary = await loop.run_in_executor(None, run_reconciliation_sweep)
            logger.info("Scheduled reconciliation sweep: %s", summary)
        except Exception as exc:
            logger.error("Scheduled reconciliation sweep failed: %s", exc, exc_info=True)
