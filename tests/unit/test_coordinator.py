"""Unit tests for the rebuild coordinator."""

import asyncio
import contextlib
import json
import threading
from unittest.mock import MagicMock

import pytest

from promotion_cache.rebuild.coordinator import RebuildCoordinator
from promotion_cache.rebuild.read_gate import ReadGate
from promotion_cache.rebuild.state import RebuildState, RebuildStatus
from promotion_cache.utils.errors import (
    LookupNotFoundError,
    RebuildAlreadyInProgressError,
    SourceUnavailableError,
    StorageError,
)
from tests.fixtures.mock_services import ListSource, MissingSource, MockRedisClient


async def _wait_for(predicate, timeout: float = 1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


def _line(promotion_id: str, price: str = "1.00") -> str:
    return f"{promotion_id},{price},2024-05-01 10:00:00 +0200\n"


class TestRebuildCycle:
    """Test a full rebuild cycle."""

    @pytest.mark.asyncio
    async def test_valid_and_malformed_lines(
        self, coordinator_factory, mock_redis_client, sample_lines, malformed_lines
    ):
        coordinator = coordinator_factory(malformed_lines + sample_lines)

        report = await coordinator.rebuild()

        assert report.outcome == "completed"
        assert report.stats.lines_read == len(sample_lines) + len(malformed_lines)
        assert report.stats.records_written == len(sample_lines)
        assert report.stats.parse_failures == len(malformed_lines)
        assert len(mock_redis_client.cache) == len(sample_lines)
        assert coordinator.state is RebuildState.IDLE
        assert coordinator.last_report is report

    @pytest.mark.asyncio
    async def test_stale_keys_are_removed(self, coordinator_factory, mock_redis_client, sample_lines):
        mock_redis_client.cache["stale-id"] = "{}"
        coordinator = coordinator_factory(sample_lines)

        await coordinator.rebuild()

        assert "stale-id" not in mock_redis_client.cache
        assert mock_redis_client.flush_count == 1

    @pytest.mark.asyncio
    async def test_duplicate_ids_leave_one_entry(self, coordinator_factory, mock_redis_client):
        coordinator = coordinator_factory([_line("dup", "1.00"), _line("dup", "2.00"), _line("other")])

        report = await coordinator.rebuild()

        assert report.stats.records_written == 3
        assert set(mock_redis_client.cache) == {"dup", "other"}
        assert json.loads(mock_redis_client.cache["dup"])["price"] in (1.0, 2.0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("pool_size", [1, 7, 100])
    async def test_pool_size_does_not_change_result(self, pool_size):
        lines = [_line(f"promo-{i}", f"{i}.005") for i in range(250)]
        store = MockRedisClient()
        coordinator = RebuildCoordinator(store, ListSource(lines), pool_size=pool_size)

        report = await coordinator.rebuild()

        assert report.pool_size == pool_size
        assert set(store.cache) == {f"promo-{i}" for i in range(250)}
        assert json.loads(store.cache["promo-3"])["price"] == 3.01

    @pytest.mark.asyncio
    async def test_all_writes_finish_before_idle(self, sample_lines):
        store = MockRedisClient(write_delay=0.01)
        coordinator = RebuildCoordinator(store, ListSource(sample_lines * 5), pool_size=3)

        report = await coordinator.rebuild()

        assert report.stats.lines_done == report.stats.lines_read
        assert store._inflight_writes == 0
        assert len(store.set_calls) == len(sample_lines) * 5

    @pytest.mark.asyncio
    async def test_blank_lines_are_skipped(self, coordinator_factory, mock_redis_client, sample_lines):
        coordinator = coordinator_factory(["\n", *sample_lines, "   \n"])

        report = await coordinator.rebuild()

        assert report.stats.lines_read == len(sample_lines)
        assert report.stats.failures == 0

    @pytest.mark.asyncio
    async def test_empty_source_leaves_empty_store(self, coordinator_factory, mock_redis_client):
        mock_redis_client.cache["old"] = "{}"
        coordinator = coordinator_factory([])

        report = await coordinator.rebuild()

        assert report.outcome == "completed"
        assert mock_redis_client.cache == {}

    @pytest.mark.asyncio
    async def test_generation_advances_per_cycle(self, coordinator_factory, rebuild_status, sample_lines):
        coordinator = coordinator_factory(sample_lines)

        await coordinator.rebuild()
        await coordinator.rebuild()

        assert rebuild_status.snapshot().generation == 2
        assert rebuild_status.snapshot().epoch == 2


class TestRebuildFailures:
    """Test cycles that cannot complete normally."""

    @pytest.mark.asyncio
    async def test_interrupted_source_still_completes(
        self, coordinator_factory, mock_redis_client, sample_lines
    ):
        coordinator = coordinator_factory(source=ListSource(sample_lines, fail_after=2))

        report = await coordinator.rebuild()

        assert report.outcome == "completed"
        assert report.source_interrupted
        assert report.error["error_code"] == "SOURCE_INTERRUPTED"
        assert report.stats.lines_read == 2
        assert len(mock_redis_client.cache) == 2
        assert coordinator.state is RebuildState.IDLE

    @pytest.mark.asyncio
    async def test_missing_source_leaves_store_empty(
        self, coordinator_factory, mock_redis_client, rebuild_status
    ):
        mock_redis_client.cache["old"] = "{}"
        coordinator = coordinator_factory(source=MissingSource())

        with pytest.raises(SourceUnavailableError):
            await coordinator.rebuild()

        assert mock_redis_client.cache == {}
        assert coordinator.state is RebuildState.IDLE
        assert coordinator.last_report.outcome == "source_unavailable"
        assert rebuild_status.snapshot().generation == 0

    @pytest.mark.asyncio
    async def test_flush_failure_aborts_cycle(self, coordinator_factory, mock_redis_client, sample_lines):
        mock_redis_client.cache["old"] = "{}"
        mock_redis_client.fail_flush = True
        source = ListSource(sample_lines)
        coordinator = coordinator_factory(source=source)

        with pytest.raises(StorageError):
            await coordinator.rebuild()

        assert source.open_count == 0
        assert mock_redis_client.cache == {"old": "{}"}
        assert coordinator.state is RebuildState.IDLE
        assert coordinator.last_report.outcome == "flush_failed"

    @pytest.mark.asyncio
    async def test_cancellation_returns_to_idle(self, coordinator_factory, mock_redis_client, sample_lines):
        mock_redis_client.write_gate = asyncio.Event()
        coordinator = coordinator_factory(sample_lines)

        task = asyncio.create_task(coordinator.rebuild())
        await _wait_for(lambda: mock_redis_client.set_calls)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert coordinator.state is RebuildState.IDLE
        assert coordinator.last_report.outcome == "aborted"

    @pytest.mark.asyncio
    async def test_cancellation_reaps_worker_tasks(self, coordinator_factory, mock_redis_client, sample_lines):
        mock_redis_client.write_gate = asyncio.Event()
        coordinator = coordinator_factory(sample_lines)

        task = asyncio.create_task(coordinator.rebuild())
        await _wait_for(lambda: mock_redis_client.set_calls)
        workers = [t for t in asyncio.all_tasks() if t.get_name().startswith("promotion-worker-")]
        assert len(workers) == coordinator.pool_size
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert all(worker.done() for worker in workers)

    @pytest.mark.asyncio
    async def test_cancellation_during_flush_returns_to_idle(
        self, coordinator_factory, mock_redis_client, rebuild_status, sample_lines
    ):
        mock_redis_client.cache["old"] = json.dumps(
            {"id": "old", "price": 1.0, "expiration_date": "2024-05-01 10:00:00"}
        )
        mock_redis_client.flush_delay = 10.0
        coordinator = coordinator_factory(sample_lines)

        task = asyncio.create_task(coordinator.rebuild())
        await _wait_for(lambda: coordinator.state is RebuildState.FLUSHING)
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert coordinator.state is RebuildState.IDLE
        assert coordinator.last_report.outcome == "aborted"

        gate = ReadGate(mock_redis_client, rebuild_status, wait_timeout=0.2)
        assert (await gate.lookup("old")).id == "old"
        with pytest.raises(LookupNotFoundError):
            await gate.lookup("absent")

        mock_redis_client.flush_delay = 0.0
        report = await coordinator.rebuild()
        assert report.outcome == "completed"
        assert len(mock_redis_client.cache) == len(sample_lines)

    @pytest.mark.asyncio
    async def test_unexpected_open_error_returns_to_idle(self, coordinator_factory, sample_lines):
        source = ListSource(sample_lines)
        source.open = MagicMock(side_effect=RuntimeError("boom"))
        coordinator = coordinator_factory(source=source)

        with pytest.raises(RuntimeError):
            await coordinator.rebuild()

        assert coordinator.state is RebuildState.IDLE
        assert coordinator.last_report.outcome == "aborted"
        assert coordinator.last_report.error["error_code"] == "ABORTED"

    @pytest.mark.asyncio
    async def test_describe_failure_leaves_state_idle(self, coordinator_factory, rebuild_status, sample_lines):
        source = ListSource(sample_lines)
        source.describe = MagicMock(side_effect=RuntimeError("boom"))
        coordinator = coordinator_factory(source=source)

        with pytest.raises(RuntimeError):
            await coordinator.rebuild()

        assert coordinator.state is RebuildState.IDLE
        assert rebuild_status.epoch == 0
        assert source.open_count == 0

    @pytest.mark.asyncio
    async def test_write_failures_are_reported(self, coordinator_factory, mock_redis_client, sample_lines):
        mock_redis_client.failing_keys.add("A1B2C3D4-0000-4000-8000-000000000001")
        coordinator = coordinator_factory(sample_lines)

        report = await coordinator.rebuild()

        assert report.outcome == "completed"
        assert report.stats.write_failures == 1
        assert len(mock_redis_client.cache) == len(sample_lines) - 1


class TestSingleFlight:
    """Only one rebuild runs at a time."""

    @pytest.mark.asyncio
    async def test_concurrent_trigger_is_rejected(self, coordinator_factory, mock_redis_client, sample_lines):
        mock_redis_client.write_gate = asyncio.Event()
        coordinator = coordinator_factory(sample_lines)

        first = asyncio.create_task(coordinator.rebuild())
        await _wait_for(lambda: mock_redis_client.set_calls)

        with pytest.raises(RebuildAlreadyInProgressError) as exc_info:
            await coordinator.rebuild("manual")
        assert exc_info.value.state in ("streaming", "draining")
        assert mock_redis_client.flush_count == 1

        mock_redis_client.write_gate.set()
        report = await asyncio.wait_for(first, timeout=2.0)
        assert report.outcome == "completed"
        assert len(mock_redis_client.cache) == len(sample_lines)

    @pytest.mark.asyncio
    async def test_simultaneous_triggers_run_once(self, coordinator_factory, mock_redis_client, sample_lines):
        coordinator = coordinator_factory(sample_lines)

        results = await asyncio.gather(
            coordinator.rebuild(),
            coordinator.rebuild(),
            return_exceptions=True,
        )

        completed = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, RebuildAlreadyInProgressError)]
        assert len(completed) == 1
        assert len(rejected) == 1
        assert mock_redis_client.flush_count == 1

    @pytest.mark.asyncio
    async def test_metrics_follow_state_changes(self, sample_lines):
        metrics = MagicMock()
        coordinator = RebuildCoordinator(
            MockRedisClient(),
            ListSource(sample_lines),
            pool_size=2,
            status=RebuildStatus(),
            metrics=metrics,
        )

        await coordinator.rebuild()

        states = [call.args[0] for call in metrics.set_rebuild_state.call_args_list]
        assert states == ["flushing", "streaming", "draining", "idle"]
        assert metrics.record_rebuild.call_args.args[0] == "completed"


class TestSourceReads:
    """Snapshot lines are read in batches off the event loop."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("batch_size", [1, 3, 256])
    async def test_batch_size_does_not_change_result(self, batch_size, sample_lines):
        store = MockRedisClient()
        coordinator = RebuildCoordinator(store, ListSource(sample_lines), read_batch_size=batch_size)

        report = await coordinator.rebuild()

        assert report.stats.lines_read == len(sample_lines)
        assert len(store.cache) == len(sample_lines)

    @pytest.mark.asyncio
    async def test_interruption_keeps_lines_read_earlier_in_batch(
        self, coordinator_factory, mock_redis_client, sample_lines
    ):
        coordinator = coordinator_factory(
            source=ListSource(sample_lines, fail_after=3), read_batch_size=len(sample_lines)
        )

        report = await coordinator.rebuild()

        assert report.source_interrupted
        assert report.stats.lines_read == 3
        assert len(mock_redis_client.cache) == 3

    @pytest.mark.asyncio
    async def test_blocking_source_does_not_stall_event_loop(self, coordinator_factory, sample_lines):
        release = threading.Event()

        def slow_lines():
            for line in sample_lines:
                release.wait(timeout=2.0)
                yield line

        source = ListSource(sample_lines)
        source.open = lambda: contextlib.nullcontext(slow_lines())
        coordinator = coordinator_factory(source=source)

        task = asyncio.create_task(coordinator.rebuild())
        await _wait_for(lambda: coordinator.state is RebuildState.STREAMING)
        loop = asyncio.get_running_loop()
        started = loop.time()
        await asyncio.sleep(0.01)
        elapsed = loop.time() - started
        release.set()
        report = await task

        assert elapsed < 1.0
        assert report.stats.lines_read == len(sample_lines)
