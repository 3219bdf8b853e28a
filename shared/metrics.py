"""
Shared metrics configuration for the Access Identity services.
"""

from typing import Dict, Any, Optional
import time
from contextlib import contextmanager

from prometheus_client import CollectorRegistry, Counter, Histogram, Info, generate_latest


class MetricsCollector:
    """Centralized metrics collector for services.

    Each collector owns its registry unless one is passed in, so several
    services (or test apps) can live in one process.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        # Service info
        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        # Health check metrics
        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        self._setup_identity_metrics()

    def _setup_identity_metrics(self):
        """Set up token verification metrics."""
        # status is "ok" or the failure reason
        self._metrics["token_validations_total"] = Counter(
            "token_validations_total",
            "Total token validations",
            ["status"],
            registry=self.registry
        )

        self._metrics["jwks_refresh_total"] = Counter(
            "jwks_refresh_total",
            "Total JWKS refreshes",
            ["status"],
            registry=self.registry
        )

        self._metrics["jwks_refresh_duration_seconds"] = Histogram(
            "jwks_refresh_duration_seconds",
            "JWKS refresh duration in seconds",
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def export(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    @contextmanager
    def time_operation(self, operation_name: str, **labels):
        """Context manager to time an operation."""
        start_time = time.time()
        try:
            yield
        finally:
            duration = time.time() - start_time
            metric = self._metrics.get(operation_name)
            if metric is not None:
                (metric.labels(**labels) if labels else metric).observe(duration)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).inc()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
