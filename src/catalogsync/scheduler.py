"""
Background catalog refresh scheduler.

Uses APScheduler to periodically:
1. Find stores whose cached catalog is stale (oldest first)
2. Refresh them through the worker pool
3. Log the success/failure tally

The check interval spreads refresh work across the staleness window:
threshold / number of cataloged stores, floored at a configured minimum. It is
recomputed after every tick and the job rescheduled when the store count has
moved it.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .catalog.orchestrator import RefreshOrchestrator
from .catalog.pool import PoolSummary, WorkerPool
from .config import SyncConfig
from .db.connection import Database
from .db.status import count_cataloged_stores, list_stale_stores

logger = logging.getLogger(__name__)

JOB_ID = "catalog_refresh"


class CatalogScheduler:
    """Scheduler for background stale-catalog refresh."""

    def __init__(
        self,
        db: Database,
        orchestrator: RefreshOrchestrator,
        config: SyncConfig,
    ):
        self.db = db
        self.orchestrator = orchestrator
        self.config = config
        self.scheduler = AsyncIOScheduler()
        self._running = False
        self.interval: Optional[float] = None

    @property
    def stale_threshold(self) -> timedelta:
        return timedelta(hours=self.config.refresh.stale_threshold_hours)

    def compute_interval(self) -> float:
        """Seconds between stale checks."""
        with self.db.locked() as conn:
            stores = count_cataloged_stores(conn)
        interval = self.stale_threshold.total_seconds() / max(stores, 1)
        return max(interval, float(self.config.scheduler.min_interval_seconds))

    def start(self):
        """Start the scheduler."""
        interval = self.interval = self.compute_interval()
        first_run = datetime.now(timezone.utc) + timedelta(
            seconds=self.config.scheduler.initial_delay_seconds
        )

        self.scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=interval, start_date=first_run),
            id=JOB_ID,
            name="Refresh Stale Catalogs",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        self.scheduler.start()
        logger.info(f"Catalog scheduler started. Checking every {interval:.0f}s")

    async def stop(self):
        """Stop the scheduler."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Catalog scheduler stopped")

    async def tick(self, now: Optional[datetime] = None) -> Optional[PoolSummary]:
        """Refresh every stale store once. Overlapping ticks are skipped."""
        if self._running:
            logger.debug("Previous refresh still running, skipping tick")
            return None

        self._running = True
        summary = None
        try:
            stale = await asyncio.to_thread(self._stale_stores, now)
            if stale:
                logger.info(f"Refreshing {len(stale)} stale catalogs")
                pool = WorkerPool(self.orchestrator, self.config.refresh.concurrency)
                summary = await pool.run(stale)
                logger.info(
                    f"Scheduled refresh: {len(summary.succeeded)}/{len(stale)} succeeded"
                )
            else:
                logger.debug("No stale catalogs")

            await self.reschedule()

        except Exception as e:
            logger.exception(f"Scheduled refresh failed: {e}")
            return None
        finally:
            self._running = False

        return summary

    def _stale_stores(self, now: Optional[datetime]):
        with self.db.locked() as conn:
            return list_stale_stores(conn, now, self.stale_threshold)

    async def reschedule(self) -> float:
        """Re-pace the job to the current number of cataloged stores."""
        interval = await asyncio.to_thread(self.compute_interval)
        if interval != self.interval and self.scheduler.get_job(JOB_ID) is not None:
            self.scheduler.reschedule_job(
                JOB_ID, trigger=IntervalTrigger(seconds=interval)
            )
            logger.info(f"Catalog scheduler now checking every {interval:.0f}s")
        self.interval = interval
        return interval


async def run_scheduler(scheduler: CatalogScheduler):
    """Run until cancelled."""
    scheduler.start()
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await scheduler.stop()
