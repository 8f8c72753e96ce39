"""
Health checks for the service.

Each check is a callable returning a bool. Critical checks decide
readiness; non-critical ones only degrade the reported status.
"""

import asyncio
import inspect
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog

from .config import ENVIRONMENTS


class HealthStatus(Enum):
    """Health status enumeration."""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


@dataclass
class HealthCheck:
    """Individual health check definition."""
    name: str
    check_func: Callable[[], Union[bool, Awaitable[bool]]]
    timeout: float = 5.0
    critical: bool = True
    description: Optional[str] = None


class HealthChecker:
    """Runs the registered checks concurrently and aggregates them."""

    def __init__(self, config):
        self.config = config
        self.logger = structlog.get_logger("health-checker")
        self.checks: List[HealthCheck] = []
        self.last_status: Optional[HealthStatus] = None

        self.add_check(
            HealthCheck(
                name="config",
                check_func=self._check_config,
                description="Service configuration validation"
            )
        )

    def add_check(self, check: HealthCheck) -> None:
        """Register a health check."""
        self.checks.append(check)
        self.logger.debug("Added health check", name=check.name, critical=check.critical)

    async def check_health(self) -> Dict[str, Any]:
        """Run every check and return the aggregated status."""
        entries = await asyncio.gather(*(self._evaluate(check) for check in self.checks))
        results = {check.name: entry for check, entry in zip(self.checks, entries)}

        critical_failures = sum(
            1 for check in self.checks
            if check.critical and results[check.name]["status"] != "healthy"
        )
        any_failure = any(entry["status"] != "healthy" for entry in entries)

        if critical_failures:
            status = HealthStatus.UNHEALTHY
        elif any_failure:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY
        self.last_status = status

        return {
            "healthy": status != HealthStatus.UNHEALTHY,
            "status": status.value,
            "checks": results,
            "critical_failures": critical_failures,
            "total_checks": len(self.checks),
            "timestamp": time.time(),
        }

    async def check_readiness(self) -> Dict[str, Any]:
        """Ready means no critical check is failing."""
        health_result = await self.check_health()
        ready = health_result["critical_failures"] == 0

        return {
            "ready": ready,
            "status": "ready" if ready else "not_ready",
            "health": health_result,
            "timestamp": time.time(),
        }

    async def _evaluate(self, check: HealthCheck) -> Dict[str, Any]:
        started = time.perf_counter()
        entry: Dict[str, Any] = {
            "description": check.description,
            "critical": check.critical,
        }
        try:
            passed = await asyncio.wait_for(self._run_check(check), timeout=check.timeout)
        except asyncio.TimeoutError:
            self.logger.warning("Health check timeout", name=check.name, timeout=check.timeout)
            passed = False
            entry["error"] = "timeout"

        entry["status"] = "healthy" if passed else "unhealthy"
        entry["duration_ms"] = (time.perf_counter() - started) * 1000
        return entry

    async def _run_check(self, check: HealthCheck) -> bool:
        try:
            if inspect.iscoroutinefunction(check.check_func):
                return bool(await check.check_func())
            return bool(check.check_func())
        except Exception as e:
            self.logger.error(
                "Health check execution error",
                name=check.name,
                error=str(e),
                exc_info=True
            )
            return False

    def _check_config(self) -> bool:
        return bool(self.config.service_name) and self.config.environment in ENVIRONMENTS
