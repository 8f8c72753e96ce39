"""Counting join that signals when every worker has drained."""

from __future__ import annotations

import asyncio


class FanInSynchronizer:
    """
    Wait for ``expected`` worker completions, then fire once.

    Workers call :meth:`worker_done` from their completion path;
    :meth:`wait` returns only after all of them have done so.
    """

    def __init__(self, expected: int) -> None:
        if expected < 1:
            raise ValueError("expected must be >= 1")
        self.expected = expected
        self._completed = 0
        self._event = asyncio.Event()

    @property
    def completed(self) -> int:
        return self._completed

    @property
    def active(self) -> int:
        return self.expected - self._completed

    def is_complete(self) -> bool:
        return self._event.is_set()

    def worker_done(self) -> None:
        if self._completed >= self.expected:
            raise RuntimeError("worker_done called more times than there are workers")
        self._completed += 1
        if self._completed == self.expected:
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()
