"""
Entry point for the promotion cache service.
"""

from __future__ import annotations

import asyncio
import math
from typing import Optional

from aiohttp import web
import structlog

from promotion_cache.framework.health import HealthCheck
from promotion_cache.framework.service import AsyncService
from promotion_cache.rebuild.coordinator import RebuildCoordinator
from promotion_cache.rebuild.read_gate import ReadGate
from promotion_cache.rebuild.scheduler import RebuildScheduler
from promotion_cache.rebuild.source import FileSnapshotSource
from promotion_cache.rebuild.state import RebuildStatus
from promotion_cache.storage.redis import RedisClient, RedisConfig
from promotion_cache.utils.errors import (
    LookupNotFoundError,
    RebuildAlreadyInProgressError,
    RebuildInProgressError,
    StorageError,
)
from promotion_cache.utils.logging import setup_logging

from .config import PromotionCacheConfig

logger = structlog.get_logger(__name__)


class PromotionCacheService(AsyncService):
    """Serves promotion lookups and keeps the store rebuilt from the snapshot."""

    def __init__(
        self,
        config: Optional[PromotionCacheConfig] = None,
        store=None,
        source=None,
    ) -> None:
        config = config or PromotionCacheConfig()
        super().__init__(config)
        self.config = config

        self.store = store or RedisClient(
            RedisConfig(
                url=config.redis.url,
                max_connections=config.worker_pool_size,
                timeout=config.redis.timeout,
            )
        )
        self.source = source or FileSnapshotSource(config.source_path)

        self.status = RebuildStatus()
        self.coordinator = RebuildCoordinator(
            store=self.store,
            source=self.source,
            pool_size=config.worker_pool_size,
            queue_size=config.queue_size,
            status=self.status,
            metrics=self.metrics,
        )
        self.read_gate = ReadGate(
            store=self.store,
            status=self.status,
            wait_timeout=config.lookup_timeout_seconds,
            metrics=self.metrics,
        )
        self.scheduler = RebuildScheduler(
            self.coordinator,
            interval_seconds=config.rebuild_interval_seconds,
            run_on_start=config.rebuild_on_start,
        )

        self.health_checker.add_check(
            HealthCheck(
                name="redis",
                check_func=self.store.health_check,
                description="Promotion store connectivity",
            )
        )
        self.health_checker.add_check(
            HealthCheck(
                name="last_rebuild",
                check_func=self._check_last_rebuild,
                critical=False,
                description="Most recent rebuild cycle completed",
            )
        )

    async def _startup_hook(self) -> None:
        """Connect to the store and start scheduled rebuilds."""
        await self.store.connect()
        await self.scheduler.start()
        logger.info(
            "Promotion cache started",
            source=self.source.describe(),
            worker_pool_size=self.coordinator.pool_size,
            rebuild_interval_seconds=self.scheduler.interval_seconds,
        )

    async def _shutdown_hook(self) -> None:
        """Stop scheduled rebuilds and close the store."""
        await self.scheduler.stop()
        await self.store.close()
        logger.info("Promotion cache stopped")

    def _setup_service_routes(self) -> None:
        """Register lookup, admin and status routes."""
        if not self.app:
            return

        self.app.router.add_get("/promotions/{id}", self._handle_get_promotion)
        self.app.router.add_post("/admin/rebuild", self._handle_trigger_rebuild)
        self.app.router.add_get("/status", self._status_handler)

    def _check_last_rebuild(self) -> bool:
        report = self.coordinator.last_report
        return report is None or report.outcome == "completed"

    async def _handle_get_promotion(self, request: web.Request) -> web.Response:
        """HTTP handler for fetching one promotion."""
        promotion_id = request.match_info["id"]

        try:
            promotion = await self.read_gate.lookup(promotion_id)
        except LookupNotFoundError:
            return web.json_response({"error": "promotion_not_found", "id": promotion_id}, status=404)
        except RebuildInProgressError as exc:
            return web.json_response(
                {"error": "rebuild_in_progress", "id": promotion_id, "retryable": True},
                status=503,
                headers={"Retry-After": str(math.ceil(exc.timeout_seconds))},
            )
        except StorageError as exc:
            self.logger.error("Lookup failed", id=promotion_id, error=exc.message)
            return web.json_response({"error": "store_unavailable", "id": promotion_id}, status=503)

        return web.json_response(promotion.to_dict())

    async def _handle_trigger_rebuild(self, request: web.Request) -> web.Response:
        """HTTP handler for manual rebuild triggers."""
        try:
            self.scheduler.trigger()
        except RebuildAlreadyInProgressError as exc:
            return web.json_response(
                {"error": "rebuild_already_in_progress", "state": exc.state},
                status=409,
            )
        return web.json_response({"status": "accepted"}, status=202)

    async def _status_handler(self, request: web.Request) -> web.Response:
        """Return rebuild state and the last cycle report."""
        report = self.coordinator.last_report
        data = {
            "service": self.config.service_slug,
            "source": self.source.describe(),
            "worker_pool_size": self.coordinator.pool_size,
            "rebuild": self.status.snapshot().to_dict(),
            "last_report": report.to_dict() if report else None,
            "store": await self.store.get_connection_info(),
        }
        return web.json_response(data)


async def main() -> None:
    """Entrypoint for running the promotion cache service."""
    config = PromotionCacheConfig()
    setup_logging(
        config.service_slug,
        log_level=config.observability.log_level,
        format_type=config.observability.log_format,
    )
    service = PromotionCacheService(config)
    await service.run()


def run() -> None:
    """Console script entrypoint."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
