"""
HTTP host for the promotion cache.

Runs the aiohttp site, serves the health and Prometheus endpoints next
to the routes a subclass registers, and stops on SIGTERM or SIGINT.
"""

import asyncio
import signal
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from aiohttp import web
import psutil
import structlog

from promotion_cache import __version__
from .config import ServiceConfig
from .health import HealthChecker
from .metrics import MetricsCollector


logger = structlog.get_logger(__name__)


class AsyncService(ABC):
    """aiohttp service whose lifetime is bounded by ``shutdown_event``."""

    def __init__(self, config: ServiceConfig):
        self.config = config
        self.logger = structlog.get_logger(config.service_name).bind(service=config.service_name)
        self.health_checker = HealthChecker(config)
        self.metrics = MetricsCollector(config.service_name)

        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None
        self.metrics_task: Optional[asyncio.Task] = None
        self.shutdown_event = asyncio.Event()
        self._stopped = False

    @abstractmethod
    async def _startup_hook(self) -> None:
        """Connect backends and start background work."""

    @abstractmethod
    async def _shutdown_hook(self) -> None:
        """Stop background work and release backends."""

    @abstractmethod
    def _setup_service_routes(self) -> None:
        """Register the service's own routes on ``self.app``."""

    def build_app(self) -> web.Application:
        self.app = web.Application(middlewares=[self._metrics_middleware])
        self.app.router.add_get("/health", self._health_handler)
        self.app.router.add_get("/health/ready", self._readiness_handler)
        self.app.router.add_get("/health/live", self._liveness_handler)
        self.app.router.add_get("/metrics", self._metrics_handler)
        self._setup_service_routes()
        return self.app

    async def startup(self) -> None:
        self.logger.info("Starting service", version=__version__)
        self.build_app()
        await self._startup_hook()
        self.metrics_task = asyncio.create_task(self._update_metrics_periodically())

        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, host=self.config.http.host, port=self.config.http.port)
        await self.site.start()
        self.logger.info("Service started", host=self.config.http.host, port=self.config.http.port)

    async def shutdown(self) -> None:
        """Stop accepting requests, then tear down; safe to call twice."""
        if self._stopped:
            return
        self._stopped = True
        self.logger.info("Shutting down service")

        if self.site:
            await self.site.stop()
        await self._shutdown_hook()
        if self.metrics_task:
            self.metrics_task.cancel()
            await asyncio.gather(self.metrics_task, return_exceptions=True)
        if self.runner:
            await self.runner.cleanup()

        self.shutdown_event.set()
        self.logger.info("Service shutdown complete")

    @web.middleware
    async def _metrics_middleware(self, request: web.Request, handler):
        start = time.perf_counter()
        status = 500
        try:
            response = await handler(request)
            status = response.status
            return response
        except web.HTTPException as exc:
            status = exc.status
            raise
        finally:
            resource = request.match_info.route.resource
            self.metrics.record_request(
                method=request.method,
                endpoint=resource.canonical if resource is not None else "unmatched",
                status=str(status),
                duration=time.perf_counter() - start,
            )

    @staticmethod
    def _check_response(result: Dict[str, Any], passed: bool) -> web.Response:
        return web.json_response(result, status=200 if passed else 503)

    async def _health_handler(self, request: web.Request) -> web.Response:
        result = await self.health_checker.check_health()
        return self._check_response(result, result["healthy"])

    async def _readiness_handler(self, request: web.Request) -> web.Response:
        result = await self.health_checker.check_readiness()
        return self._check_response(result, result["ready"])

    async def _liveness_handler(self, request: web.Request) -> web.Response:
        return web.json_response({"alive": True})

    async def _metrics_handler(self, request: web.Request) -> web.Response:
        return web.Response(
            body=self.metrics.get_metrics(),
            headers={"Content-Type": self.metrics.get_content_type()},
        )

    async def refresh_runtime_metrics(self) -> None:
        """Publish version, health and resident memory once."""
        self.metrics.update_service_info(version=__version__, environment=self.config.environment)
        health = await self.health_checker.check_health()
        self.metrics.set_health_status(health["healthy"])
        try:
            self.metrics.set_memory_usage(psutil.Process().memory_info().rss)
        except psutil.Error as e:
            logger.warning("Failed to update memory metrics", error=str(e))

    async def _update_metrics_periodically(self) -> None:
        interval = self.config.observability.metrics_interval_seconds
        while not self.shutdown_event.is_set():
            try:
                await self.refresh_runtime_metrics()
            except Exception as e:
                logger.error("Error updating metrics", error=str(e))
            await asyncio.sleep(interval)

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(signum, self._on_signal, signum)
            except (NotImplementedError, RuntimeError):
                self.logger.debug("Signal handlers not supported", signal=signum)

    def _on_signal(self, signum: int) -> None:
        self.logger.info("Received shutdown signal", signal=signal.Signals(signum).name)
        self.shutdown_event.set()

    async def run(self) -> None:
        """Serve until a shutdown signal arrives."""
        self._install_signal_handlers()
        try:
            await self.startup()
            await self.shutdown_event.wait()
        except Exception as e:
            self.logger.error("Service error", error=str(e), exc_info=True)
            raise
        finally:
            await self.shutdown()
