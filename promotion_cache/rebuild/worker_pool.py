"""Fixed-size pool of parse-and-store workers fed by a shared line queue."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

import structlog

from promotion_cache.utils.errors import ParseError, StoreWriteError

from .fan_in import FanInSynchronizer
from .parser import parse_promotion

logger = structlog.get_logger(__name__)

# Queue item telling a worker the stream is exhausted; one per worker.
END_OF_STREAM = None

DEFAULT_POOL_SIZE = 100


@dataclass
class RebuildStats:
    """Per-cycle counters shared by the producer and the workers."""
    lines_read: int = 0
    lines_done: int = 0
    records_written: int = 0
    parse_failures: int = 0
    serialization_failures: int = 0
    write_failures: int = 0
    unexpected_failures: int = 0

    @property
    def failures(self) -> int:
        return (
            self.parse_failures
            + self.serialization_failures
            + self.write_failures
            + self.unexpected_failures
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class WorkerPool:
    """
    Spawns ``size`` interchangeable workers over one line queue.

    Every failure is contained at the line: it is logged, counted and
    the worker moves on. Two lines with the same id may be written in
    either order, so the surviving value is whichever write lands last.
    """

    def __init__(self, store, size: int = DEFAULT_POOL_SIZE, metrics=None) -> None:
        if size < 1:
            raise ValueError("size must be >= 1")
        self.store = store
        self.size = size
        self.metrics = metrics
        self.logger = structlog.get_logger("worker-pool")

    def start(
        self,
        lines: asyncio.Queue,
        barrier: FanInSynchronizer,
        stats: RebuildStats,
    ) -> List[asyncio.Task]:
        """Launch the workers; each reports to ``barrier`` when it exits."""
        if barrier.expected != self.size:
            raise ValueError("barrier must expect exactly one completion per worker")
        return [
            asyncio.create_task(
                self._worker(worker_id, lines, barrier, stats),
                name=f"promotion-worker-{worker_id}",
            )
            for worker_id in range(self.size)
        ]

    async def _worker(
        self,
        worker_id: int,
        lines: asyncio.Queue,
        barrier: FanInSynchronizer,
        stats: RebuildStats,
    ) -> None:
        try:
            while True:
                line = await lines.get()
                if line is END_OF_STREAM:
                    break
                try:
                    status = await self._process_line(line, stats)
                except Exception:
                    stats.unexpected_failures += 1
                    status = "error"
                    self.logger.error(
                        "Unexpected failure while storing promotion",
                        worker=worker_id,
                        promotion=line,
                        exc_info=True,
                    )
                finally:
                    stats.lines_done += 1
                self._record(status)
        finally:
            barrier.worker_done()

    async def _process_line(self, line: str, stats: RebuildStats) -> str:
        try:
            promotion = parse_promotion(line)
        except ParseError as exc:
            stats.parse_failures += 1
            self.logger.warning(
                "Can't parse promotion.",
                promotion=exc.line,
                reason=exc.reason,
                error=exc.message,
            )
            return "parse_error"

        try:
            payload = promotion.to_json()
        except (TypeError, ValueError) as exc:
            stats.serialization_failures += 1
            self.logger.warning("Can't serialize promotion.", promotion=line, error=str(exc))
            return "serialization_error"

        try:
            await self.store.set(promotion.id, payload)
        except StoreWriteError as exc:
            stats.write_failures += 1
            self.logger.error(
                "Can't communicate with the store.",
                key=promotion.id,
                error=exc.details.get("error", exc.message),
            )
            return "write_error"

        stats.records_written += 1
        return "stored"

    def _record(self, status: str) -> None:
        if self.metrics is not None:
            self.metrics.record_line(status)


def default_queue_size(pool_size: int, queue_size: Optional[int] = None) -> int:
    """Bound for the line queue; twice the pool unless configured."""
    if queue_size is not None:
        if queue_size < 1:
            raise ValueError("queue_size must be >= 1")
        return queue_size
    return pool_size * 2
