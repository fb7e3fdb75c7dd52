"""Sync Scheduler Worker - keeps the local mirror fresh without anyone clicking.

Hey future me - this worker owns exactly ONE asyncio task for the whole process.

On start:
1. Optional startup sync after a short delay (lets the API come up first)
   - nothing ever synced → full sync (there is no cursor to be incremental against)
   - otherwise → smart incremental (cheap count check per type, then fetch only deltas)
2. Loop: sleep sync_interval_minutes (read from the sync_settings row EVERY cycle so an
   admin change takes effect without restart), then smart incremental sync.

A pass that is already running (admin button, another trigger) makes the scheduled
pass a no-op: SyncInProgressError is logged at debug and the loop continues.
"""

import asyncio
import contextlib
import logging
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from peekstash.config.settings import SyncConfig
from peekstash.domain.exceptions import SyncAbortedError, SyncInProgressError
from peekstash.infrastructure.persistence.database import SessionScope
from peekstash.infrastructure.persistence.models import SyncSettingsModel

if TYPE_CHECKING:
    from peekstash.application.services.stash_sync_service import StashSyncService

logger = logging.getLogger(__name__)

MIN_INTERVAL_MINUTES = 1


class SyncSchedulerWorker:
    """Periodic smart-incremental sync with a startup pass.

    Lifecycle:
    - Created in the API lifespan
    - start() spawns the loop task (idempotent)
    - stop() cancels and awaits it (idempotent)
    """

    def __init__(
        self,
        session_scope: SessionScope,
        sync_service: "StashSyncService",
        config: SyncConfig | None = None,
    ) -> None:
        self._session_scope = session_scope
        self._sync_service = sync_service
        self._config = config or SyncConfig()
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._start_time = time.time()
        self._stats: dict[str, Any] = {
            "cycles_completed": 0,
            "errors_total": 0,
            "last_run_at": None,
            "last_run_type": None,
        }

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("sync_scheduler.already_running")
            return
        self._running = True
        self._start_time = time.time()
        self._task = asyncio.create_task(self._run_loop(), name="peekstash-sync-scheduler")
        logger.info(
            "worker.started",
            extra={
                "worker": "sync_scheduler",
                "startup_sync": self._config.startup_sync_enabled,
            },
        )

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info(
            "worker.stopped",
            extra={
                "worker": "sync_scheduler",
                "cycles_completed": self._stats["cycles_completed"],
                "errors_total": self._stats["errors_total"],
                "uptime_seconds": int(time.time() - self._start_time),
            },
        )

    async def get_interval_minutes(self) -> int:
        """Interval from the sync_settings row, config default when the row is missing."""
        async with self._session_scope() as session:
            value = await session.scalar(
                select(SyncSettingsModel.sync_interval_minutes).where(SyncSettingsModel.id == 1)
            )
        if value is None:
            value = self._config.default_interval_minutes
        return max(int(value), MIN_INTERVAL_MINUTES)

    async def _run_loop(self) -> None:
        if self._config.startup_sync_enabled:
            try:
                await asyncio.sleep(self._config.startup_delay_seconds)
            except asyncio.CancelledError:
                return
            await self._run_once(startup=True)

        while self._running:
            try:
                interval = await self.get_interval_minutes()
            except Exception:
                self._stats["errors_total"] += 1
                logger.error("sync_scheduler.settings.failed", exc_info=True)
                interval = self._config.default_interval_minutes

            try:
                await asyncio.sleep(interval * 60)
            except asyncio.CancelledError:
                break
            await self._run_once(startup=False)

    async def _run_once(self, startup: bool) -> None:
        """One scheduled pass. Never raises: the loop must survive a bad cycle."""
        try:
            if startup and not await self._sync_service.has_ever_synced():
                run_type = "full"
                await self._sync_service.full_sync()
            else:
                run_type = "smart_incremental"
                await self._sync_service.smart_incremental_sync()
            self._stats["cycles_completed"] += 1
            self._stats["last_run_at"] = datetime.now(UTC)
            self._stats["last_run_type"] = run_type
            logger.info("sync_scheduler.cycle.completed", extra={"sync_type": run_type})
        except SyncInProgressError:
            logger.debug("sync_scheduler.skipped", extra={"reason": "sync_in_progress"})
        except SyncAbortedError:
            logger.info("sync_scheduler.cycle.aborted")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats["errors_total"] += 1
            logger.error(
                "sync_scheduler.cycle.failed",
                extra={"error_type": type(e).__name__},
                exc_info=True,
            )

    def get_stats(self) -> dict[str, Any]:
        return {**self._stats, "running": self._running}
