"""
Prometheus metrics of the phones marketplace API.

Each collector owns its registry, so several service instances (tests) can
coexist in one process without duplicate timeseries errors.
"""

from typing import Optional

from prometheus_client import Counter, Histogram, Info, CollectorRegistry, generate_latest

# Request latency buckets, in seconds; fresh proxy hits land in the first ones
LATENCY_BUCKETS = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)


class MetricsCollector:
    """Request, health and cache metrics of a service."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None, version: str = "1.0.0"):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.service_info = Info("service", "Service information", registry=self.registry)
        self.service_info.info({"service": service_name, "version": version})

        self.http_requests = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )
        self.http_request_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            buckets=LATENCY_BUCKETS,
            registry=self.registry
        )
        self.health_checks = Counter(
            "health_check_total", "Health check requests", ["status"], registry=self.registry
        )
        self.errors = Counter(
            "errors_total", "Errors returned to clients", ["error_type"], registry=self.registry
        )

        self.http_cache_events = Counter(
            "http_cache_events_total",
            "Reverse proxy cache outcomes",
            ["state"],
            registry=self.registry
        )
        self.cache_invalidations = Counter(
            "cache_invalidations_total",
            "Cache invalidations triggered by entity lifecycle events",
            ["kind"],
            registry=self.registry
        )
        self.tagged_cache_requests = Counter(
            "tagged_cache_requests_total",
            "Tagged cache lookups",
            ["result"],
            registry=self.registry
        )

    def render(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        self.http_requests.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
        self.http_request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def record_health_check(self, status: str):
        self.health_checks.labels(status=status).inc()

    def record_error(self, error_type: str):
        self.errors.labels(error_type=error_type).inc()

    def record_http_cache_event(self, state: str):
        """Count one proxy state (``fresh``, ``stale``, ``store``...)."""
        self.http_cache_events.labels(state=state).inc()

    def record_invalidation(self, kind: str):
        """Count one invalidation (``entity``, ``list``, ``http_cache_touched``, ``http_cache_removed``)."""
        self.cache_invalidations.labels(kind=kind).inc()

    def record_tagged_cache_request(self, result: str):
        """Count one tagged cache lookup (``hit``, ``miss``, ``early``)."""
        self.tagged_cache_requests.labels(result=result).inc()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
