"""Rebuild state owned by the coordinator and observed by readers."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class RebuildState(str, Enum):
    """Rebuild cycle states."""
    IDLE = "idle"
    FLUSHING = "flushing"
    STREAMING = "streaming"
    DRAINING = "draining"

    @property
    def is_active(self) -> bool:
        return self is not RebuildState.IDLE


_ALLOWED_TRANSITIONS = {
    RebuildState.IDLE: {RebuildState.FLUSHING},
    RebuildState.FLUSHING: {RebuildState.STREAMING, RebuildState.IDLE},
    RebuildState.STREAMING: {RebuildState.DRAINING, RebuildState.IDLE},
    RebuildState.DRAINING: {RebuildState.IDLE},
}


@dataclass(frozen=True)
class RebuildSnapshot:
    """Read-only view of the rebuild state at one instant."""
    state: RebuildState
    epoch: int
    generation: int
    started_at: Optional[float] = None

    @property
    def rebuild_active(self) -> bool:
        return self.state.is_active

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "rebuild_active": self.rebuild_active,
            "epoch": self.epoch,
            "generation": self.generation,
            "started_at": self.started_at,
        }


class RebuildStatus:
    """
    Holds the current rebuild state and broadcasts transitions.

    ``epoch`` counts cycles that have started and ``generation`` counts
    cycles that have returned to idle after draining. Only the rebuild
    coordinator calls :meth:`transition`; everyone else reads through
    :meth:`snapshot` or waits with :meth:`wait_until_idle`.
    """

    def __init__(self) -> None:
        self._state = RebuildState.IDLE
        self._epoch = 0
        self._generation = 0
        self._started_at: Optional[float] = None
        self._condition = asyncio.Condition()

    @property
    def state(self) -> RebuildState:
        return self._state

    @property
    def epoch(self) -> int:
        return self._epoch

    def snapshot(self) -> RebuildSnapshot:
        return RebuildSnapshot(
            state=self._state,
            epoch=self._epoch,
            generation=self._generation,
            started_at=self._started_at,
        )

    async def transition(self, new_state: RebuildState, *, completed: bool = False) -> RebuildSnapshot:
        """Move to ``new_state`` and wake every waiter."""
        async with self._condition:
            if new_state not in _ALLOWED_TRANSITIONS[self._state]:
                raise RuntimeError(f"Illegal rebuild transition {self._state.value} -> {new_state.value}")

            previous = self._state
            self._state = new_state
            if previous is RebuildState.IDLE:
                self._epoch += 1
                self._started_at = time.time()
            if new_state is RebuildState.IDLE:
                if completed:
                    self._generation += 1
                self._started_at = None

            self._condition.notify_all()
            logger.debug(
                "Rebuild state changed",
                previous=previous.value,
                state=new_state.value,
                epoch=self._epoch,
                generation=self._generation,
            )
            return self.snapshot()

    async def wait_until_idle(self, timeout: Optional[float]) -> bool:
        """
        Block until no rebuild is active.

        Returns False if ``timeout`` seconds elapse first.
        """
        if not self._state.is_active:
            return True
        async with self._condition:
            try:
                await asyncio.wait_for(
                    self._condition.wait_for(lambda: not self._state.is_active),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                return False
        return True
