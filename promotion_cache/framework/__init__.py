"""
Core framework components for the async service.

Provides base classes for configuration, lifecycle,
health checks and metrics.
"""

from .service import AsyncService
from .config import ServiceConfig, HttpConfig, RedisSettings, ObservabilityConfig
from .health import HealthChecker, HealthCheck
from .metrics import MetricsCollector

__all__ = [
    "AsyncService",
    "ServiceConfig",
    "HttpConfig",
    "RedisSettings",
    "ObservabilityConfig",
    "HealthChecker",
    "HealthCheck",
    "MetricsCollector",
]
