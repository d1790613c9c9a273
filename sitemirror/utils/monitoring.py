"""
Monitoring and metrics collection for the site mirror.
"""

import time
import logging
from typing import Dict, Any

from prometheus_client import CollectorRegistry, Counter, Gauge, start_http_server


class MetricsCollector:
    """Owns the Prometheus metrics of one scanner."""

    def __init__(self, prometheus_port: int = 8000):
        self.logger = logging.getLogger(__name__)
        self.prometheus_port = prometheus_port
        self.registry = CollectorRegistry()

        self.resources_discovered = Counter(
            'sitemirror_resources_discovered_total',
            'Distinct URLs registered',
            registry=self.registry
        )
        self.resources_finished = Counter(
            'sitemirror_resources_finished_total',
            'Resources that reached a terminal state',
            ['state'],
            registry=self.registry
        )
        self.requests = Counter(
            'sitemirror_requests_total',
            'HTTP requests issued',
            registry=self.registry
        )
        self.retries = Counter(
            'sitemirror_request_retries_total',
            'Request retries by reason',
            ['reason'],
            registry=self.registry
        )
        self.bytes_downloaded = Counter(
            'sitemirror_bytes_downloaded_total',
            'Body bytes downloaded',
            registry=self.registry
        )
        self.active_tasks = Gauge(
            'sitemirror_active_tasks',
            'Live crawl tasks',
            registry=self.registry
        )
        self.in_flight = Gauge(
            'sitemirror_in_flight_requests',
            'Requests holding an admission slot',
            registry=self.registry
        )

    def start_server(self):
        """Start Prometheus metrics HTTP server."""
        try:
            start_http_server(self.prometheus_port, registry=self.registry)
            self.logger.info(f"Prometheus metrics server started on port {self.prometheus_port}")
        except OSError as e:
            self.logger.error(f"Failed to start Prometheus server: {e}")

    def value(self, name: str, labels: Dict[str, str] = None) -> float:
        """Read a sample value, 0.0 if it was never recorded."""
        sample = self.registry.get_sample_value(name, labels or {})
        return sample or 0.0


class CrawlerMonitor:
    """High-level monitoring interface for the crawler."""

    def __init__(self, metrics_collector: MetricsCollector):
        self.metrics = metrics_collector
        self.start_time = time.time()

    def record_discovered(self):
        self.metrics.resources_discovered.inc()

    def record_request(self):
        self.metrics.requests.inc()
        self.metrics.in_flight.inc()

    def record_request_done(self):
        self.metrics.in_flight.dec()

    def record_retry(self, reason: str):
        self.metrics.retries.labels(reason=reason).inc()

    def record_download(self, size: int):
        self.metrics.bytes_downloaded.inc(size)

    def record_finished(self, state_name: str):
        self.metrics.resources_finished.labels(state=state_name).inc()

    def update_active_tasks(self, count: int):
        self.metrics.active_tasks.set(count)

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of the main counters."""
        runtime = time.time() - self.start_time
        discovered = self.metrics.value('sitemirror_resources_discovered_total')
        requests = self.metrics.value('sitemirror_requests_total')

        return {
            'runtime_seconds': runtime,
            'resources_discovered': discovered,
            'requests': requests,
            'bytes_downloaded': self.metrics.value('sitemirror_bytes_downloaded_total'),
            'requests_per_second': requests / runtime if runtime > 0 else 0,
        }
