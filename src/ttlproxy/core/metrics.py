"""
Prometheus metrics collection.

Each collector owns its own registry so that several application instances
(tests, embedded use) can coexist in one process.
"""

import time
from typing import Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info

from .. import __version__

logger = structlog.get_logger(__name__)


class MetricsCollector:
    """
    Centralized metrics collection for ttlproxy.

    Keep metrics simple,
    use in-memory counters, let Prometheus handle storage.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry or CollectorRegistry()

        # Service info
        self.service_info = Info(
            "ttlproxy_service",
            "ttlproxy service information",
            registry=self.registry,
        )
        self.service_info.info({
            "version": __version__,
            "service": "ttlproxy",
        })

        # Request metrics
        self.requests_total = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry,
        )

        self.request_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=self.registry,
        )

        # Registration / lookup metrics
        self.registrations_total = Counter(
            "proxy_registrations_total",
            "Proxy registration attempts",
            ["outcome"],
            registry=self.registry,
        )

        self.lookups_total = Counter(
            "proxy_lookups_total",
            "Proxy id lookups on the forwarding path",
            ["outcome"],
            registry=self.registry,
        )

        # Upstream metrics
        self.upstream_requests_total = Counter(
            "proxy_upstream_requests_total",
            "Outbound requests to proxy targets",
            ["status_code"],
            registry=self.registry,
        )

        self.upstream_request_duration = Histogram(
            "proxy_upstream_request_duration_seconds",
            "Time until upstream response headers arrive",
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=self.registry,
        )

        # Sweeper metrics
        self.sweeps_total = Counter(
            "proxy_sweeps_total",
            "Completed expiry sweeps",
            registry=self.registry,
        )

        self.sweep_errors_total = Counter(
            "proxy_sweep_errors_total",
            "Expiry sweeps that failed",
            registry=self.registry,
        )

        self.entries_pruned_total = Counter(
            "proxy_entries_pruned_total",
            "Expired entries removed by the sweeper",
            registry=self.registry,
        )

        self.store_entries = Gauge(
            "proxy_store_entries",
            "Entries currently held by the store",
            registry=self.registry,
        )

        self.uptime_seconds = Gauge(
            "uptime_seconds",
            "Service uptime in seconds",
            registry=self.registry,
        )

        self._start_time = time.time()

    def record_request(
        self,
        method: str,
        endpoint: str,
        status_code: int,
        duration_seconds: float
    ) -> None:
        """Record HTTP request metrics."""
        self.requests_total.labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self.request_duration.labels(
            method=method,
            endpoint=endpoint
        ).observe(duration_seconds)

    def record_registration(self, outcome: str) -> None:
        self.registrations_total.labels(outcome=outcome).inc()

    def record_lookup(self, outcome: str) -> None:
        self.lookups_total.labels(outcome=outcome).inc()

    def record_upstream_request(self, status_code: Optional[int], duration_seconds: float) -> None:
        """Record an outbound request; status_code None means the request failed."""
        label = str(status_code) if status_code is not None else "error"
        self.upstream_requests_total.labels(status_code=label).inc()
        self.upstream_request_duration.observe(duration_seconds)

    def record_sweep(self, removed: int, remaining: int) -> None:
        self.sweeps_total.inc()
        self.entries_pruned_total.inc(removed)
        self.store_entries.set(remaining)

    def record_sweep_error(self) -> None:
        self.sweep_errors_total.inc()

    def update_store_size(self, entries: int) -> None:
        self.store_entries.set(entries)

    def update_system_metrics(self) -> None:
        """Update system-level metrics."""
        self.uptime_seconds.set(time.time() - self._start_time)
