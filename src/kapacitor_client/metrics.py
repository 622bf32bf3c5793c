"""Prometheus instrumentation for Kapacitor API requests.

Instruments are registered on a dedicated registry (not the global one)
unless the caller supplies a registry to share with the rest of their
application.
"""

from prometheus_client import CollectorRegistry, Counter, Histogram


class RequestMetrics:
    """Request counters and latency histogram for a client."""

    def __init__(self, registry: CollectorRegistry | None = None):
        """Create and register the instruments.

        Args:
            registry: Registry to register on. A new private registry is
                created when omitted.
        """
        self.registry = registry if registry is not None else CollectorRegistry()
        self.requests = Counter(
            "kapacitor_client_requests",
            "Kapacitor API requests by method and response status, "
            "status is 'error' when the transport failed",
            labelnames=["method", "status"],
            registry=self.registry,
        )
        self.duration = Histogram(
            "kapacitor_client_request_duration_seconds",
            "Kapacitor API request duration in seconds",
            labelnames=["method"],
            registry=self.registry,
        )

    def observe(self, method: str, status: str, duration: float) -> None:
        """Record one completed (or failed) request."""
        self.requests.labels(method=method, status=status).inc()
        self.duration.labels(method=method).observe(duration)
