"""
Prometheus metrics.

Each service owns one ``MetricsCollector`` bound to its own registry.
"""

from typing import Any, Dict, Optional, Tuple

from prometheus_client import Counter, Histogram, Info, CollectorRegistry

# name -> (type, description, labels)
METRICS: Dict[str, Tuple[type, str, Tuple[str, ...]]] = {
    "http_requests_total": (Counter, "Total HTTP requests", ("method", "endpoint", "status_code")),
    "http_request_duration_seconds": (Histogram, "HTTP request duration in seconds", ("method", "endpoint")),
    "health_check_total": (Counter, "Total health check requests", ("status",)),
    "errors_total": (Counter, "Total errors", ("error_type", "service")),
    "ability_checks_total": (Counter, "Ability checks by decision", ("decision",)),
    "ability_check_duration_seconds": (Histogram, "Ability check duration in seconds", ()),
    "cache_requests_total": (Counter, "Ability cache lookups", ("cache_type", "result")),
    "abilities_cleaned_total": (Counter, "Ability records deleted by cleanup", ("kind",)),
}


class MetricsCollector:
    """Service metrics on a dedicated registry."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry
        self._metrics: Dict[str, Any] = {
            name: metric_type(name, description, list(labels), registry=registry)
            for name, (metric_type, description, labels) in METRICS.items()
        }

        info = Info("service_info", "Service information", registry=registry)
        info.info({"service": service_name, "version": "1.0.0"})

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        self._metrics["http_requests_total"].labels(
            method=method, endpoint=endpoint, status_code=str(status_code)
        ).inc()
        self._metrics["http_request_duration_seconds"].labels(method=method, endpoint=endpoint).observe(duration)

    def record_health_check(self, status: str):
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        self._metrics["errors_total"].labels(error_type=error_type, service=service or self.service_name).inc()

    def record_ability_check(self, decision: str, duration: float):
        """Record the outcome ("allow", "deny" or "unknown") of an ability check."""
        self._metrics["ability_checks_total"].labels(decision=decision).inc()
        self._metrics["ability_check_duration_seconds"].observe(duration)

    def record_cleanup(self, kind: str, count: int):
        if count:
            self._metrics["abilities_cleaned_total"].labels(kind=kind).inc(count)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter by name; unknown names are ignored."""
        metric = self._metrics.get(metric_name)
        if metric is not None:
            metric.labels(**labels).inc()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    return MetricsCollector(service_name, registry)
