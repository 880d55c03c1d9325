"""Daily auto-sync of every eligible tracked profile."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import pytz
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from utils.config import SchedulerConfig, SyncConfig
from utils.database import to_iso
from utils.logger import get_scheduler_logger

from .storage import TrackerStorage
from .syncer import SolutionSyncer

logger = get_scheduler_logger()

AUTO_SYNC_JOB_ID = "auto_sync"
CLEANUP_JOB_ID = "sync_error_cleanup"


class AutoSyncScheduler:
    """
    Runs ``SolutionSyncer`` over all auto-sync profiles once a day.

    ``_running`` guards against overlapping batches. Everything runs on one
    event loop and the flag is checked and set without awaiting in between,
    so a plain attribute is enough.
    """

    def __init__(
        self,
        storage: TrackerStorage,
        syncer: SolutionSyncer,
        sync_config: Optional[SyncConfig] = None,
        scheduler_config: Optional[SchedulerConfig] = None,
        environment: str = "development",
    ):
        self.storage = storage
        self.syncer = syncer
        self.sync_config = sync_config or SyncConfig()
        self.scheduler_config = scheduler_config or SchedulerConfig()
        self.environment = environment
        self._running = False
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_batch(self) -> Optional[Dict[str, Any]]:
        """
        Sync every profile that has auto-sync on and was not synced recently.

        Returns None when a batch is already in progress, else a summary with
        ``eligible``, ``succeeded`` and ``failed`` counts. Errors reaching the
        database at batch start propagate.
        """
        if self._running:
            logger.warning("Auto-sync already in progress, skipping...")
            return None

        self._running = True
        logger.info(f"Auto-sync triggered at {datetime.now(timezone.utc):%Y-%m-%d %H:%M:%S} UTC")
        try:
            await self.storage.ensure_connection()

            cutoff = datetime.now(timezone.utc) - timedelta(hours=self.sync_config.stale_after_hours)
            profiles = await self.storage.list_profiles_due_for_sync(to_iso(cutoff))
            logger.info(f"Found {len(profiles)} users eligible for auto-sync")

            succeeded = 0
            failed = 0
            for index, profile in enumerate(profiles):
                if index > 0:
                    await asyncio.sleep(self.sync_config.user_delay)

                username = profile["username"]
                auth_user_id = profile["auth_user_id"]
                try:
                    logger.info(f"Auto-syncing user: {username} (account {auth_user_id})")
                    result = await self.syncer.sync_user_solutions(username, auth_user_id)
                except Exception as e:
                    failed += 1
                    logger.error(f"Auto-sync failed for {username}: {e}")
                    await self._record_status(auth_user_id, username, False, str(e) or e.__class__.__name__)
                    continue

                succeeded += 1
                await self._record_status(auth_user_id, username, True)
                logger.info(
                    f"Auto-sync complete for {username}: saved {result['savedCount']}, "
                    f"skipped {result['skippedCount']}"
                )

            logger.info(f"Auto-sync batch complete: {succeeded} succeeded, {failed} failed")
            return {"eligible": len(profiles), "succeeded": succeeded, "failed": failed}
        finally:
            self._running = False

    async def _record_status(self, auth_user_id: str, username: str, success: bool, error: Optional[str] = None) -> None:
        try:
            await self.storage.update_sync_status(auth_user_id, username, success, error)
        except Exception as e:
            logger.error(f"Failed to update sync status for {username}: {e}")

    async def cleanup_stale_errors(self) -> int:
        """Clear ``last_sync_error`` on profiles not synced within the retention window."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=self.scheduler_config.error_retention_days)
        cleared = await self.storage.clear_stale_sync_errors(to_iso(cutoff))
        logger.info(f"Cleaned up old sync data ({cleared} profiles)")
        return cleared

    async def _run_cleanup_job(self) -> None:
        try:
            await self.cleanup_stale_errors()
        except Exception as e:
            logger.error(f"Cleanup error: {e}", exc_info=True)

    async def trigger_manual_sync(self) -> Optional[Dict[str, Any]]:
        """Run the batch on demand; refused in production."""
        if self.environment == "production":
            logger.warning("Manual sync only available outside production")
            return None
        logger.info("Manually triggering auto-sync...")
        return await self.run_batch()

    def start(self) -> AsyncIOScheduler:
        """Register both daily jobs; must be called with a running event loop."""
        if self._scheduler is not None:
            logger.warning("Scheduler already running, skipping initialization")
            return self._scheduler

        tz = pytz.timezone(self.scheduler_config.timezone)
        sync_hour, sync_minute = SchedulerConfig.parse_time(self.scheduler_config.sync_time)
        cleanup_hour, cleanup_minute = SchedulerConfig.parse_time(self.scheduler_config.cleanup_time)

        scheduler = AsyncIOScheduler(timezone=tz)
        scheduler.add_job(
            self.run_batch,
            CronTrigger(hour=sync_hour, minute=sync_minute, timezone=tz),
            id=AUTO_SYNC_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            self._run_cleanup_job,
            CronTrigger(hour=cleanup_hour, minute=cleanup_minute, timezone=tz),
            id=CLEANUP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler

        logger.info(
            f"Auto-sync scheduler started (runs daily at {self.scheduler_config.sync_time} "
            f"{self.scheduler_config.timezone})"
        )
        logger.info(
            f"Cleanup scheduler started (runs daily at {self.scheduler_config.cleanup_time} "
            f"{self.scheduler_config.timezone})"
        )
        return scheduler

    def shutdown(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Scheduler stopped")
