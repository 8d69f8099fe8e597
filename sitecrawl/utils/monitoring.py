"""
Monitoring and metrics collection for the site crawler.
"""

import time
import logging
from typing import Dict, Optional, Any, List
from dataclasses import dataclass, field

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, generate_latest
from prometheus_client import start_http_server


@dataclass
class MetricPoint:
    """Individual metric data point."""
    timestamp: float
    value: float
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class Metric:
    """Metric container with history."""
    name: str
    description: str
    metric_type: str  # counter, gauge, histogram
    points: List[MetricPoint] = field(default_factory=list)
    current_value: float = 0.0


class MetricsCollector:
    """Collects crawler metrics in memory and, optionally, in Prometheus."""

    MAX_POINTS = 1000

    def __init__(self, enable_prometheus: bool = False, prometheus_port: int = 8000):
        self.logger = logging.getLogger(__name__)
        self.metrics: Dict[str, Metric] = {}
        self.enable_prometheus = enable_prometheus
        self.prometheus_port = prometheus_port

        self.prometheus_registry: Optional[CollectorRegistry] = None
        self.prometheus_metrics: Dict[str, Any] = {}

        if self.enable_prometheus:
            self._setup_prometheus()

    def _setup_prometheus(self):
        """Setup Prometheus metrics on a private registry."""
        self.prometheus_registry = CollectorRegistry()
        registry = self.prometheus_registry

        self.prometheus_metrics = {
            'pages_crawled_total': Counter(
                'sitecrawl_pages_crawled_total',
                'Pages crawled, by fetch strategy',
                ['strategy'],
                registry=registry
            ),
            'errors_total': Counter(
                'sitecrawl_errors_total',
                'Crawl errors, by error type',
                ['error_type'],
                registry=registry
            ),
            'cache_requests_total': Counter(
                'sitecrawl_cache_requests_total',
                'Render cache lookups, by outcome',
                ['outcome'],
                registry=registry
            ),
            'chunks_saved_total': Counter(
                'sitecrawl_chunks_saved_total',
                'Chunks persisted during progressive crawls',
                registry=registry
            ),
            'render_time_seconds': Histogram(
                'sitecrawl_render_time_seconds',
                'Browser render duration',
                registry=registry
            ),
            'pool_browsers': Gauge(
                'sitecrawl_pool_browsers',
                'Browsers currently in the pool',
                registry=registry
            ),
            'pool_contexts': Gauge(
                'sitecrawl_pool_contexts',
                'Browser contexts currently open',
                registry=registry
            ),
        }

        self.logger.info("Prometheus metrics initialized")

    def start_prometheus_server(self):
        """Start Prometheus metrics HTTP server."""
        if not self.enable_prometheus:
            return

        try:
            start_http_server(self.prometheus_port, registry=self.prometheus_registry)
            self.logger.info(f"Prometheus metrics server started on port {self.prometheus_port}")
        except OSError as e:
            self.logger.error(f"Failed to start Prometheus server: {e}")

    def export_text(self) -> bytes:
        """Render the Prometheus exposition format."""
        if not self.enable_prometheus:
            return b''
        return generate_latest(self.prometheus_registry)

    def record_metric(self, name: str, value: float, labels: Optional[Dict[str, str]] = None,
                      description: str = "", metric_type: str = "gauge", increment: Optional[float] = None):
        """Record a metric value."""
        labels = labels or {}

        if name not in self.metrics:
            self.metrics[name] = Metric(
                name=name,
                description=description,
                metric_type=metric_type
            )

        metric = self.metrics[name]
        metric.points.append(MetricPoint(timestamp=time.time(), value=value, labels=labels))
        metric.current_value = value

        if len(metric.points) > self.MAX_POINTS:
            metric.points = metric.points[-self.MAX_POINTS:]

        if self.enable_prometheus and name in self.prometheus_metrics:
            prom_metric = self.prometheus_metrics[name]
            if labels:
                prom_metric = prom_metric.labels(**labels)

            if metric_type == 'counter':
                prom_metric.inc(1 if increment is None else increment)
            elif metric_type == 'histogram':
                prom_metric.observe(value)
            else:
                prom_metric.set(value)

    def increment_counter(self, name: str, labels: Optional[Dict[str, str]] = None,
                          description: str = "", amount: float = 1):
        """Increment a counter metric."""
        current_value = 0
        if name in self.metrics:
            current_value = self.metrics[name].current_value

        self.record_metric(name, current_value + amount, labels, description, "counter",
                           increment=amount)

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None,
                  description: str = ""):
        """Set a gauge metric value."""
        self.record_metric(name, value, labels, description, "gauge")

    def observe_histogram(self, name: str, value: float, labels: Optional[Dict[str, str]] = None,
                          description: str = ""):
        """Record a histogram observation."""
        self.record_metric(name, value, labels, description, "histogram")

    def get_metric(self, name: str) -> Optional[Metric]:
        """Get a metric by name."""
        return self.metrics.get(name)

    def get_current_values(self) -> Dict[str, float]:
        """Get current values of all metrics."""
        return {name: metric.current_value for name, metric in self.metrics.items()}


class CrawlerMonitor:
    """High-level monitoring interface used by the crawl components."""

    def __init__(self, metrics_collector: Optional[MetricsCollector] = None):
        self.metrics = metrics_collector or MetricsCollector()
        self.logger = logging.getLogger(__name__)
        self.start_time = time.time()

    def record_page_crawled(self, url: str, strategy: str):
        """Record a finished page and the strategy that produced it."""
        self.metrics.increment_counter('pages_crawled_total', {'strategy': strategy},
                                       'Pages crawled')

    def record_error(self, error_type: str, error_message: str = ""):
        """Record an error event."""
        self.metrics.increment_counter('errors_total', {'error_type': error_type}, 'Crawl errors')
        self.logger.debug(f"Recorded {error_type} error: {error_message}")

    def record_cache_lookup(self, hit: bool):
        outcome = 'hit' if hit else 'miss'
        self.metrics.increment_counter('cache_requests_total', {'outcome': outcome},
                                       'Render cache lookups')

    def record_chunks_saved(self, count: int):
        self.metrics.increment_counter('chunks_saved_total', description='Chunks saved',
                                       amount=count)

    def record_render_time(self, seconds: float):
        self.metrics.observe_histogram('render_time_seconds', seconds,
                                       description='Browser render duration')

    def update_pool_stats(self, browsers: int, contexts: int):
        """Update browser pool gauges."""
        self.metrics.set_gauge('pool_browsers', browsers, description='Pooled browsers')
        self.metrics.set_gauge('pool_contexts', contexts, description='Open contexts')

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        current_values = self.metrics.get_current_values()
        runtime = time.time() - self.start_time

        return {
            'runtime_seconds': runtime,
            'metrics': current_values,
            'rates': {
                'pages_per_minute': current_values.get('pages_crawled_total', 0) / (runtime / 60) if runtime > 0 else 0,
            }
        }
