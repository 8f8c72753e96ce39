"""
Full-refresh coordinator for the promotion store.

One cycle flushes the store, streams the snapshot through the
worker pool and waits for every worker to drain:

    IDLE -> FLUSHING -> STREAMING -> DRAINING -> IDLE

Rebuild intent is published before the flush and withdrawn only after
the fan-in completes, so readers consulting :class:`RebuildStatus`
never mistake the emptied store for the current generation.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

import structlog

from promotion_cache.utils.errors import (
    PromotionCacheError,
    RebuildAlreadyInProgressError,
    SourceInterruptedError,
    SourceUnavailableError,
    StorageError,
)
from promotion_cache.utils.logging import bind_rebuild_context

from .fan_in import FanInSynchronizer
from .state import RebuildState, RebuildStatus
from .worker_pool import (
    DEFAULT_POOL_SIZE,
    END_OF_STREAM,
    RebuildStats,
    WorkerPool,
    default_queue_size,
)

logger = structlog.get_logger(__name__)

READ_BATCH_SIZE = 256


def _read_batch(iterator: Iterator[str], size: int) -> Tuple[List[str], Optional[Exception]]:
    """Pull up to ``size`` lines; a read error ends the batch and is handed back."""
    batch: List[str] = []
    try:
        for line in itertools.islice(iterator, size):
            batch.append(line)
    except (OSError, ValueError) as exc:
        return batch, exc
    return batch, None


@dataclass
class RebuildReport:
    """Outcome of one rebuild cycle."""
    trigger: str
    epoch: int
    pool_size: int
    source: str
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    outcome: str = "running"
    source_interrupted: bool = False
    stats: RebuildStats = field(default_factory=RebuildStats)
    error: Optional[Dict[str, Any]] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trigger": self.trigger,
            "epoch": self.epoch,
            "pool_size": self.pool_size,
            "source": self.source,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_seconds": self.duration_seconds,
            "outcome": self.outcome,
            "source_interrupted": self.source_interrupted,
            "stats": self.stats.to_dict(),
            "error": self.error,
        }


class RebuildCoordinator:
    """Runs at most one rebuild cycle at a time against the store."""

    def __init__(
        self,
        store,
        source,
        pool_size: int = DEFAULT_POOL_SIZE,
        queue_size: Optional[int] = None,
        status: Optional[RebuildStatus] = None,
        metrics=None,
        read_batch_size: int = READ_BATCH_SIZE,
    ) -> None:
        self.store = store
        self.source = source
        self.read_batch_size = read_batch_size
        self.pool = WorkerPool(store, size=pool_size, metrics=metrics)
        self.queue_size = default_queue_size(pool_size, queue_size)
        self.status = status or RebuildStatus()
        self.metrics = metrics
        self.last_report: Optional[RebuildReport] = None
        self.logger = structlog.get_logger("rebuild-coordinator")

        # Guards the idle check, the intent flag and the flush; never the whole cycle.
        self._transition_lock = asyncio.Lock()

    @property
    def state(self) -> RebuildState:
        return self.status.state

    @property
    def pool_size(self) -> int:
        return self.pool.size

    async def rebuild(self, trigger: str = "scheduled") -> RebuildReport:
        """
        Run one full refresh cycle.

        Raises:
            RebuildAlreadyInProgressError: another cycle is not yet idle.
            StorageError: the store could not be flushed.
            SourceUnavailableError: the snapshot could not be opened; the
                store is left empty.
        """
        async with self._transition_lock:
            if self.status.state.is_active:
                self.logger.warning(
                    "Rebuild trigger rejected",
                    trigger=trigger,
                    state=self.status.state.value,
                )
                self._record_outcome("rejected")
                raise RebuildAlreadyInProgressError(state=self.status.state.value)

            source_name = self.source.describe()
            snapshot = await self._transition(RebuildState.FLUSHING)
            report = RebuildReport(
                trigger=trigger,
                epoch=snapshot.epoch,
                pool_size=self.pool.size,
                source=source_name,
            )
            log = bind_rebuild_context(self.logger, snapshot.epoch, trigger)
            log.debug("Synchronizing database with the snapshot")

            try:
                await self.store.flushdb()
            except StorageError as exc:
                log.error("Store flush failed, rebuild aborted", error=exc.message)
                await self._abort(report, "flush_failed", exc)
                raise
            except BaseException as exc:
                await self._abort_cycle(report, log, exc)
                raise
            log.debug("Database is flushed.")

        try:
            handle = self.source.open()
        except SourceUnavailableError as exc:
            log.error("Can't open the file.", filename=report.source, error=exc.message)
            await self._abort(report, "source_unavailable", exc)
            raise
        except BaseException as exc:
            await self._abort_cycle(report, log, exc)
            raise

        try:
            with handle as source_lines:
                await self._transition(RebuildState.STREAMING)
                await self._stream(source_lines, report, log)
        except BaseException as exc:
            await self._abort_cycle(report, log, exc)
            raise

        report.outcome = "completed"
        report.finished_at = time.time()
        await self._transition(RebuildState.IDLE, completed=True)
        self.last_report = report
        self._record_outcome("completed", report)
        log.info(
            "Database has been synchronized with the snapshot",
            duration_seconds=report.duration_seconds,
            source_interrupted=report.source_interrupted,
            **report.stats.to_dict(),
        )
        return report

    async def _stream(self, source_lines: Iterable[str], report: RebuildReport, log) -> None:
        lines: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        barrier = FanInSynchronizer(self.pool.size)
        workers = self.pool.start(lines, barrier, report.stats)
        try:
            await self._produce(source_lines, lines, report, log)
            for _ in range(self.pool.size):
                await lines.put(END_OF_STREAM)

            await self._transition(RebuildState.DRAINING)
            await barrier.wait()
            # Every worker has passed its completion path; reap the tasks.
            await asyncio.gather(*workers)
        finally:
            pending = [worker for worker in workers if not worker.done()]
            for worker in pending:
                worker.cancel()
            if pending:
                # Each cancelled worker still reports to the barrier on its way out.
                await asyncio.gather(*pending, return_exceptions=True)

    async def _produce(
        self,
        source_lines: Iterable[str],
        lines: asyncio.Queue,
        report: RebuildReport,
        log,
    ) -> None:
        stats = report.stats
        iterator = iter(source_lines)
        try:
            while True:
                # Disk reads happen off the event loop, one batch at a time.
                batch, error = await asyncio.to_thread(_read_batch, iterator, self.read_batch_size)
                for line in batch:
                    if not line.strip():
                        continue
                    stats.lines_read += 1
                    await lines.put(line)
                if error is not None:
                    raise error
                if not batch:
                    break
        except (OSError, ValueError) as exc:
            interruption = SourceInterruptedError(
                "File reading has been interrupted.",
                path=report.source,
                lines_read=stats.lines_read,
                details={"error": str(exc)},
            )
            report.source_interrupted = True
            report.error = interruption.to_dict()
            log.warning(
                interruption.message,
                filename=report.source,
                lines_read=stats.lines_read,
                error=str(exc),
            )

    async def _transition(self, state: RebuildState, *, completed: bool = False):
        snapshot = await self.status.transition(state, completed=completed)
        if self.metrics is not None:
            self.metrics.set_rebuild_state(state.value)
        return snapshot

    async def _abort_cycle(self, report: RebuildReport, log, exc: BaseException) -> None:
        # Cancellation included: the state must end up IDLE.
        log.error("Rebuild cycle aborted", error=repr(exc))
        await self._abort(report, "aborted", exc)

    async def _abort(self, report: RebuildReport, outcome: str, exc: BaseException) -> None:
        report.outcome = outcome
        report.finished_at = time.time()
        if isinstance(exc, PromotionCacheError):
            report.error = exc.to_dict()
        else:
            report.error = {"error_code": "ABORTED", "message": repr(exc)}
        if self.status.state.is_active:
            await self._transition(RebuildState.IDLE)
        self.last_report = report
        self._record_outcome(outcome, report)

    def _record_outcome(self, outcome: str, report: Optional[RebuildReport] = None) -> None:
        if self.metrics is None:
            return
        self.metrics.record_rebuild(
            outcome,
            report.duration_seconds if report is not None else None,
        )
