"""Prometheus metrics collection."""

from fastapi import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, generate_latest

from relay.core.logging import get_logger

logger = get_logger(__name__)


class MetricsCollector:
    """Collects and exposes Prometheus metrics."""

    def __init__(self) -> None:
        """Initialize metrics collectors."""
        # Publishing metrics
        self.messages_published_total = Counter(
            "relay_messages_published_total",
            "Total messages published to the broker",
            ["destination"],
        )

        self.publish_failures_total = Counter(
            "relay_publish_failures_total",
            "Total publish attempts that failed",
            ["destination"],
        )

        self.pending_publishes = Gauge(
            "relay_pending_publishes", "Publishes dispatched but not yet finished"
        )

        # Consuming metrics
        self.messages_consumed_total = Counter(
            "relay_messages_consumed_total",
            "Total messages consumed from the broker",
            ["destination"],
        )

        self.handler_failures_total = Counter(
            "relay_handler_failures_total",
            "Total message handler failures",
            ["destination"],
        )

        # Broker metrics
        self.broker_connection_errors = Counter(
            "relay_broker_connection_errors_total", "Total broker connection errors"
        )

        # API metrics
        self.http_requests_total = Counter(
            "relay_http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
        )

        logger.info("metrics_collector_initialized")

    def record_message_published(self, destination: str) -> None:
        """Record a successful publish."""
        self.messages_published_total.labels(destination=destination).inc()

    def record_publish_failed(self, destination: str) -> None:
        """Record a failed publish."""
        self.publish_failures_total.labels(destination=destination).inc()

    def record_message_consumed(self, destination: str) -> None:
        """Record message consumption."""
        self.messages_consumed_total.labels(destination=destination).inc()

    def record_handler_failed(self, destination: str) -> None:
        """Record a message handler failure."""
        self.handler_failures_total.labels(destination=destination).inc()

    def record_connection_error(self) -> None:
        """Record broker connection error."""
        self.broker_connection_errors.inc()

    def record_http_request(self, method: str, endpoint: str, status_code: int) -> None:
        """Record HTTP request."""
        self.http_requests_total.labels(
            method=method, endpoint=endpoint, status_code=status_code
        ).inc()

    def set_pending_publishes(self, count: int) -> None:
        """Set number of in-flight publishes."""
        self.pending_publishes.set(count)


_metrics_collector: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Get or create global metrics collector."""
    global _metrics_collector

    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()

    return _metrics_collector


async def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
