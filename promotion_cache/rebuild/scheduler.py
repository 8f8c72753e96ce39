"""Periodic and manual triggering of rebuild cycles."""

import asyncio
from typing import Optional, Set

import structlog

from promotion_cache.utils.errors import (
    RebuildAlreadyInProgressError,
    SourceUnavailableError,
    StorageError,
)

from .coordinator import RebuildCoordinator, RebuildReport


logger = structlog.get_logger(__name__)


class RebuildScheduler:
    """Scheduler for promotion store rebuilds."""

    def __init__(self, coordinator: RebuildCoordinator, interval_seconds: float, run_on_start: bool = True):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.coordinator = coordinator
        self.interval_seconds = interval_seconds
        self.run_on_start = run_on_start
        self.is_running = False
        self._periodic_task: Optional[asyncio.Task] = None
        self._manual_tasks: Set[asyncio.Task] = set()

    async def start(self):
        """Start the rebuild scheduler."""
        if self.is_running:
            logger.warning("Rebuild scheduler already running")
            return

        self.is_running = True
        self._periodic_task = asyncio.create_task(self._run_periodic(), name="rebuild-scheduler")
        logger.info(
            "Rebuild scheduler started",
            interval_seconds=self.interval_seconds,
            run_on_start=self.run_on_start,
        )

    async def stop(self):
        """Stop the scheduler and cancel any cycle it started."""
        self.is_running = False

        tasks = [task for task in [self._periodic_task, *self._manual_tasks] if task and not task.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._periodic_task = None
        self._manual_tasks.clear()
        logger.info("Rebuild scheduler stopped")

    def trigger(self) -> asyncio.Task:
        """
        Start a manual rebuild in the background.

        Raises RebuildAlreadyInProgressError right away when a cycle is
        running or a manual one is already pending.
        """
        if self.coordinator.state.is_active or self._manual_tasks:
            raise RebuildAlreadyInProgressError(state=self.coordinator.state.value)

        task = asyncio.create_task(self._run_cycle("manual"), name="rebuild-manual")
        self._manual_tasks.add(task)
        task.add_done_callback(self._manual_tasks.discard)
        logger.info("Manual rebuild triggered")
        return task

    async def _run_periodic(self):
        if not self.run_on_start:
            await asyncio.sleep(self.interval_seconds)

        while self.is_running:
            await self._run_cycle("scheduled")
            await asyncio.sleep(self.interval_seconds)

    async def _run_cycle(self, trigger: str) -> Optional[RebuildReport]:
        try:
            return await self.coordinator.rebuild(trigger)
        except RebuildAlreadyInProgressError as e:
            logger.warning("Rebuild skipped, another cycle is running", trigger=trigger, state=e.state)
        except (SourceUnavailableError, StorageError) as e:
            logger.error("Rebuild cycle failed", trigger=trigger, error_code=e.error_code, error=e.message)
        return None
