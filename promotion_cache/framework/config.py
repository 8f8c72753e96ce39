"""
Configuration management for the service.

Provides typed configuration classes with environment variable
injection and validation.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict
from urllib.parse import quote

from promotion_cache.utils.errors import ConfigurationError


ENVIRONMENTS = ("local", "dev", "staging", "prod")


def env_int(name: str, default: str) -> int:
    """Read an integer environment variable."""
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer", config_key=name, config_value=raw) from exc


def env_float(name: str, default: str) -> float:
    """Read a float environment variable."""
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number", config_key=name, config_value=raw) from exc


def env_bool(name: str, default: str) -> bool:
    """Read a boolean environment variable."""
    return os.getenv(name, default).lower() == "true"


@dataclass
class RedisSettings:
    """Redis connection configuration."""
    host: str = field(default_factory=lambda: os.getenv("REDIS_HOST", "localhost"))
    port: int = field(default_factory=lambda: env_int("REDIS_PORT", "6379"))
    password: str = field(default_factory=lambda: os.getenv("REDIS_PASSWORD", ""))
    db: int = field(default_factory=lambda: env_int("REDIS_DB", "0"))
    timeout: int = field(default_factory=lambda: env_int("REDIS_TIMEOUT_SECONDS", "30"))

    @property
    def url(self) -> str:
        auth = f":{quote(self.password, safe='')}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


@dataclass
class HttpConfig:
    """HTTP listener configuration."""
    host: str = field(default_factory=lambda: os.getenv("PROMO_CACHE_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: env_int("PORT", "1321"))


@dataclass
class ObservabilityConfig:
    """Observability configuration."""
    log_level: str = field(default_factory=lambda: os.getenv("PROMO_CACHE_LOG_LEVEL", "info"))
    log_format: str = field(default_factory=lambda: os.getenv("PROMO_CACHE_LOG_FORMAT", "json"))
    metrics_interval_seconds: float = field(
        default_factory=lambda: env_float("PROMO_CACHE_METRICS_INTERVAL_SECONDS", "30")
    )


@dataclass
class ServiceConfig:
    """Base service configuration."""
    service_name: str
    environment: str = field(default_factory=lambda: os.getenv("PROMO_CACHE_ENV", "local"))

    # Sub-configurations
    http: HttpConfig = field(default_factory=HttpConfig)
    redis: RedisSettings = field(default_factory=RedisSettings)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.service_name:
            raise ConfigurationError("service_name is required", config_key="service_name")

        if self.environment not in ENVIRONMENTS:
            raise ConfigurationError(
                f"Invalid environment: {self.environment}",
                config_key="environment",
                config_value=self.environment,
            )

        if self.observability.log_format not in ("json", "console"):
            raise ConfigurationError(
                f"Invalid log format: {self.observability.log_format}",
                config_key="log_format",
                config_value=self.observability.log_format,
            )

        if not 0 < self.http.port < 65536:
            raise ConfigurationError("Invalid HTTP port", config_key="port", config_value=self.http.port)

    @classmethod
    def from_env(cls, service_name: str) -> "ServiceConfig":
        """Create configuration from environment variables."""
        return cls(service_name=service_name)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "service_name": self.service_name,
            "environment": self.environment,
            "http": {
                "host": self.http.host,
                "port": self.http.port,
            },
            "redis": {
                "host": self.redis.host,
                "port": self.redis.port,
                "db": self.redis.db,
                "timeout": self.redis.timeout,
            },
            "observability": {
                "log_level": self.observability.log_level,
                "log_format": self.observability.log_format,
                "metrics_interval_seconds": self.observability.metrics_interval_seconds,
            },
        }
