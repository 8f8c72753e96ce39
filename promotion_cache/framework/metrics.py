"""Prometheus metrics collection for the promotion cache."""

from typing import Optional

from prometheus_client import (
    Counter, Histogram, Gauge, Info,
    CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
)

REBUILD_STATE_VALUES = {
    "idle": 0,
    "flushing": 1,
    "streaming": 2,
    "draining": 3,
}


class MetricsCollector:
    """Centralized metrics collection for the service and its rebuild pipeline."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        # Initialize common metrics
        self._init_common_metrics()
        self._init_rebuild_metrics()

    def _init_common_metrics(self):
        """Initialize common service metrics."""
        # Service info
        self.info = Info(
            f"{self.service_name}_info",
            f"Information about {self.service_name}",
            registry=self.registry
        )

        # Request metrics
        self.request_count = Counter(
            f"{self.service_name}_requests_total",
            f"Total number of requests processed by {self.service_name}",
            ["method", "endpoint", "status"],
            registry=self.registry
        )

        self.request_duration = Histogram(
            f"{self.service_name}_request_duration_seconds",
            f"Request duration in seconds for {self.service_name}",
            ["method", "endpoint"],
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=self.registry
        )

        # Health metrics
        self.health_status = Gauge(
            f"{self.service_name}_health_status",
            f"Health status of {self.service_name} (1=healthy, 0=unhealthy)",
            registry=self.registry
        )

        self.memory_usage = Gauge(
            f"{self.service_name}_memory_usage_bytes",
            f"Memory usage in bytes for {self.service_name}",
            registry=self.registry
        )

    def _init_rebuild_metrics(self):
        """Initialize rebuild pipeline and lookup metrics."""
        self.rebuilds_total = Counter(
            f"{self.service_name}_rebuilds_total",
            "Rebuild cycles by outcome",
            ["outcome"],
            registry=self.registry
        )

        self.rebuild_duration = Histogram(
            f"{self.service_name}_rebuild_duration_seconds",
            "Duration of finished rebuild cycles",
            buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0],
            registry=self.registry
        )

        self.lines_processed = Counter(
            f"{self.service_name}_lines_processed_total",
            "Snapshot lines handled by the worker pool by status",
            ["status"],
            registry=self.registry
        )

        self.lookups_total = Counter(
            f"{self.service_name}_lookups_total",
            "Promotion lookups by result",
            ["result"],
            registry=self.registry
        )

        self.rebuild_state = Gauge(
            f"{self.service_name}_rebuild_state",
            "Current rebuild state (0=idle, 1=flushing, 2=streaming, 3=draining)",
            registry=self.registry
        )

    def record_request(self, method: str, endpoint: str, status: str, duration: float):
        """Record a request metric."""
        self.request_count.labels(method=method, endpoint=endpoint, status=status).inc()
        self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def record_rebuild(self, outcome: str, duration: Optional[float] = None):
        """Record the outcome of a rebuild trigger."""
        self.rebuilds_total.labels(outcome=outcome).inc()
        if duration is not None:
            self.rebuild_duration.observe(duration)

    def record_line(self, status: str):
        """Record one processed snapshot line."""
        self.lines_processed.labels(status=status).inc()

    def record_lookup(self, result: str):
        """Record one lookup result."""
        self.lookups_total.labels(result=result).inc()

    def set_rebuild_state(self, state: str):
        """Set the rebuild state gauge."""
        self.rebuild_state.set(REBUILD_STATE_VALUES.get(state, -1))

    def set_health_status(self, healthy: bool):
        """Set the health status metric."""
        self.health_status.set(1 if healthy else 0)

    def set_memory_usage(self, bytes_used: int):
        """Set the memory usage metric."""
        self.memory_usage.set(bytes_used)

    def update_service_info(self, version: str, environment: str, **kwargs):
        """Update service information."""
        info_dict = {
            "version": version,
            "environment": environment,
            **kwargs
        }
        self.info.info(info_dict)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self.registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics."""
        return CONTENT_TYPE_LATEST
