"""Pytest configuration and fixtures."""

from typing import List

import pytest
import pytest_asyncio

from promotion_cache.rebuild.coordinator import RebuildCoordinator
from promotion_cache.rebuild.read_gate import ReadGate
from promotion_cache.rebuild.state import RebuildStatus
from tests.fixtures.mock_services import ListSource, MockRedisClient


@pytest_asyncio.fixture
async def mock_redis_client():
    """Mock Redis client fixture."""
    client = MockRedisClient()
    await client.connect()
    yield client
    await client.close()


@pytest.fixture
def sample_lines() -> List[str]:
    """Well-formed snapshot lines."""
    return [
        "172FFC14-D229-4C93-B06B-F48B8C095512,9.68,2022-06-04 06:01:20 +0200\n",
        "3B3E4F66-2F6B-4A43-A0B3-4C1B4A3C6A3F,1.001,2024-05-01 10:00:00 +0200\n",
        "A1B2C3D4-0000-4000-8000-000000000001,2.00,2023-12-31 23:59:59 -0500\n",
        "A1B2C3D4-0000-4000-8000-000000000002,0.1,2025-01-15 08:30:00 +0000\n",
    ]


@pytest.fixture
def malformed_lines() -> List[str]:
    """Lines that must be rejected by the parser."""
    return [
        "only-two-fields,1.00\n",
        "bad-price,abc,2024-05-01 10:00:00 +0200\n",
        "bad-date,1.00,01/05/2024 10:00 +0200\n",
    ]


@pytest.fixture
def rebuild_status() -> RebuildStatus:
    return RebuildStatus()


@pytest.fixture
def coordinator_factory(mock_redis_client, rebuild_status):
    """Build coordinators sharing the mock store and status."""

    def _build(lines=None, source=None, pool_size: int = 4, **kwargs) -> RebuildCoordinator:
        return RebuildCoordinator(
            store=mock_redis_client,
            source=source or ListSource(lines or []),
            pool_size=pool_size,
            status=rebuild_status,
            **kwargs,
        )

    return _build


@pytest.fixture
def read_gate(mock_redis_client, rebuild_status) -> ReadGate:
    return ReadGate(mock_redis_client, rebuild_status, wait_timeout=1.0)
