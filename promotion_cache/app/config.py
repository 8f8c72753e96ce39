"""
Configuration for the promotion cache service.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Optional

from promotion_cache.framework.config import ServiceConfig, env_bool, env_float, env_int
from promotion_cache.utils.errors import ConfigurationError


class PromotionCacheConfig(ServiceConfig):
    """Service configuration loaded from environment variables."""

    def __init__(self) -> None:
        super().__init__(service_name="promotion_cache")

        # Human-readable slug used for logging/identifiers where hyphenated format is preferred
        self.service_slug = "promotion-cache"

        # Snapshot
        self.source_path = os.getenv("PROMO_CACHE_SOURCE_PATH", "promotions.csv")

        # Rebuild pipeline; the pool size also bounds Redis connections
        self.worker_pool_size = env_int("PROMO_CACHE_WORKER_POOL_SIZE", "100")
        raw_queue_size = os.getenv("PROMO_CACHE_QUEUE_SIZE")
        self.queue_size: Optional[int] = (
            env_int("PROMO_CACHE_QUEUE_SIZE", raw_queue_size) if raw_queue_size else None
        )

        # Scheduling
        self.rebuild_interval_minutes = env_float("PROMO_CACHE_REBUILD_INTERVAL_MINUTES", "30")
        self.rebuild_on_start = env_bool("PROMO_CACHE_REBUILD_ON_START", "true")

        # Read gate
        self.lookup_timeout_seconds = env_float("PROMO_CACHE_LOOKUP_TIMEOUT_SECONDS", "5")

        self._validate_rebuild_settings()

    @property
    def rebuild_interval_seconds(self) -> float:
        return self.rebuild_interval_minutes * 60

    def _validate_rebuild_settings(self) -> None:
        if self.worker_pool_size < 1:
            raise ConfigurationError(
                "Worker pool size must be >= 1",
                config_key="PROMO_CACHE_WORKER_POOL_SIZE",
                config_value=self.worker_pool_size,
            )
        if self.queue_size is not None and self.queue_size < 1:
            raise ConfigurationError(
                "Queue size must be >= 1",
                config_key="PROMO_CACHE_QUEUE_SIZE",
                config_value=self.queue_size,
            )
        if self.rebuild_interval_minutes <= 0:
            raise ConfigurationError(
                "Rebuild interval must be positive",
                config_key="PROMO_CACHE_REBUILD_INTERVAL_MINUTES",
                config_value=self.rebuild_interval_minutes,
            )
        if self.lookup_timeout_seconds <= 0:
            raise ConfigurationError(
                "Lookup timeout must be positive",
                config_key="PROMO_CACHE_LOOKUP_TIMEOUT_SECONDS",
                config_value=self.lookup_timeout_seconds,
            )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["rebuild"] = {
            "source_path": self.source_path,
            "worker_pool_size": self.worker_pool_size,
            "queue_size": self.queue_size,
            "interval_minutes": self.rebuild_interval_minutes,
            "run_on_start": self.rebuild_on_start,
            "lookup_timeout_seconds": self.lookup_timeout_seconds,
        }
        return data
