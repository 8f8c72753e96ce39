"""
Rebuild pipeline and read gate.

Provides:
- Snapshot line parsing
- Worker pool with fan-in completion
- Rebuild coordinator and its state
- Read gate for lookups during a rebuild
- Periodic and manual rebuild triggers
"""

from .parser import parse_promotion, ceil_to_cent
from .source import FileSnapshotSource
from .fan_in import FanInSynchronizer
from .worker_pool import WorkerPool, RebuildStats, END_OF_STREAM
from .state import RebuildState, RebuildStatus, RebuildSnapshot
from .coordinator import RebuildCoordinator, RebuildReport
from .read_gate import ReadGate
from .scheduler import RebuildScheduler

__all__ = [
    "parse_promotion",
    "ceil_to_cent",
    "FileSnapshotSource",
    "FanInSynchronizer",
    "WorkerPool",
    "RebuildStats",
    "END_OF_STREAM",
    "RebuildState",
    "RebuildStatus",
    "RebuildSnapshot",
    "RebuildCoordinator",
    "RebuildReport",
    "ReadGate",
    "RebuildScheduler",
]
