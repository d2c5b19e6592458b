#!/usr/bin/env python3
"""
Retention Service - Deletes items older than the configured age
"""
import asyncio
import logging
import time
from typing import Callable, Optional

from memoriad.services.artifact_service import ArtifactService
from memoriad.services.database_service import DatabaseService

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400
CLEANUP_INTERVAL = 24 * 60 * 60


def next_tick(previous: float, now: float, interval: float) -> float:
    """First tick on the previous + k * interval grid strictly after now"""
    tick = previous + interval
    if tick <= now:
        tick += (int((now - tick) // interval) + 1) * interval
    return tick


class RetentionService:
    """Service for the scheduled retention sweep"""

    def __init__(self, database_service: DatabaseService, artifact_service: ArtifactService,
                 days: int = 30, delete_unstarred_only: bool = True,
                 interval: float = CLEANUP_INTERVAL, clock: Callable[[], float] = time.time):
        """
        Initialize retention service

        Args:
            database_service: Store to sweep
            artifact_service: Removes files of deleted image items
            days: Maximum item age in days
            delete_unstarred_only: Keep starred items regardless of age
            interval: Seconds between sweeps
            clock: Source of the current time in seconds
        """
        self.db_service = database_service
        self.artifact_service = artifact_service
        self.days = days
        self.delete_unstarred_only = delete_unstarred_only
        self.interval = interval
        self.clock = clock

    def cutoff_timestamp(self, now: Optional[float] = None) -> int:
        now = self.clock() if now is None else now
        return int(now) - self.days * SECONDS_PER_DAY

    def run_cleanup(self, now: Optional[float] = None) -> int:
        """
        Delete expired items and their files

        Items are deleted one at a time so capture and IPC requests can
        interleave; a failure on one item is logged and the sweep goes on.

        Returns:
            Number of items deleted
        """
        cutoff = self.cutoff_timestamp(now)
        item_ids = self.db_service.expired_item_ids(cutoff, self.delete_unstarred_only)

        if not item_ids:
            logger.info("Cleanup: no items to delete")
            return 0

        deleted_count = 0
        for item_id in item_ids:
            try:
                deleted, orphaned_hash = self.db_service.delete_item(item_id)
            except Exception as e:
                logger.warning(f"Failed to delete item {item_id}: {e}")
                continue
            if not deleted:
                continue
            deleted_count += 1
            if orphaned_hash:
                self.db_service.release_artifacts([orphaned_hash], self.artifact_service.remove_for_hash)

        logger.info(
            f"Cleanup run completed: deleted {deleted_count} items "
            f"(retention_days={self.days}, delete_unstarred_only={self.delete_unstarred_only})"
        )
        return deleted_count

    async def run(self):
        """Sweep now, then every interval until cancelled"""
        loop = asyncio.get_running_loop()
        logger.info("Running initial cleanup")
        next_run = loop.time() + self.interval
        await self._sweep()

        while True:
            await asyncio.sleep(max(0.0, next_run - loop.time()))
            logger.info("Running scheduled cleanup")
            await self._sweep()
            # ticks missed while the sweep ran long or the host slept are skipped
            next_run = next_tick(next_run, loop.time(), self.interval)

    async def _sweep(self):
        try:
            await asyncio.to_thread(self.run_cleanup)
        except Exception as e:
            logger.warning(f"Cleanup failed: {e}")
