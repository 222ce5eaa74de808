"""Monitoring and metrics."""

from relay.monitoring.metrics import MetricsCollector, get_metrics_collector

__all__ = ["MetricsCollector", "get_metrics_collector"]
