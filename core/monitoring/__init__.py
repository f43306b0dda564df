"""
Monitoring components for the swap router
"""

from .prometheus_metrics import OrderMetricsCollector, MetricsTimer, get_metrics_for_testing

__all__ = [
    "OrderMetricsCollector",
    "MetricsTimer",
    "get_metrics_for_testing",
]
