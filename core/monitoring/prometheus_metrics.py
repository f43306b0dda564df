"""
Prometheus metrics for the order execution pipeline
"""

from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry
from typing import Optional
import time


class OrderMetricsCollector:
    """Order pipeline metrics for Prometheus"""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        # Throughput metrics
        self.orders_processed = Counter(
            'swap_orders_processed_total',
            'Total orders that reached a terminal status',
            ['status', 'venue'],
            registry=self.registry
        )

        self.job_retries = Counter(
            'swap_job_retries_total',
            'Total jobs rescheduled with backoff',
            registry=self.registry
        )

        self.jobs_exhausted = Counter(
            'swap_jobs_exhausted_total',
            'Total jobs that ran out of attempts',
            registry=self.registry
        )

        # Latency metrics
        self.processing_latency = Histogram(
            'swap_order_processing_seconds',
            'Order processing latency from pending to terminal status',
            ['status'],
            buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
            registry=self.registry
        )

        # Streaming metrics
        self.ws_messages_sent = Counter(
            'swap_ws_messages_sent_total',
            'Total status messages pushed to websocket subscribers',
            ['event'],
            registry=self.registry
        )

        self.ws_connections = Gauge(
            'swap_ws_connections',
            'Currently registered websocket subscribers',
            registry=self.registry
        )

        # Error metrics
        self.errors_total = Counter(
            'swap_errors_total',
            'Total errors by component',
            ['component', 'error_code'],
            registry=self.registry
        )

    def record_order_processed(self, status: str, venue: Optional[str], duration_seconds: float):
        """Record an order reaching confirmed or failed"""
        self.orders_processed.labels(status=status, venue=venue or "none").inc()
        self.processing_latency.labels(status=status).observe(duration_seconds)

    def record_job_retry(self):
        self.job_retries.inc()

    def record_job_exhausted(self):
        self.jobs_exhausted.inc()

    def record_ws_message(self, event: str, count: int = 1):
        self.ws_messages_sent.labels(event=event).inc(count)

    def set_ws_connections(self, count: int):
        self.ws_connections.set(count)

    def record_error(self, component: str, error_code: str):
        """Record error by component"""
        self.errors_total.labels(component=component, error_code=error_code).inc()


class MetricsTimer:
    """Context manager for timing order processing"""

    def __init__(self):
        self.start_time = None
        self.duration = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time:
            self.duration = time.perf_counter() - self.start_time


def get_metrics_for_testing() -> OrderMetricsCollector:
    """Get metrics collector with custom registry for testing"""
    return OrderMetricsCollector(registry=CollectorRegistry())
