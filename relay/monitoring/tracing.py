"""
OpenTelemetry instrumentation for the relay processes.

Creates spans for every HTTP request and for every aio_pika publish and
consume. Spans are exported over OTLP; the collector endpoint, headers and
protocol options come from the standard ``OTEL_EXPORTER_OTLP_*`` environment
variables. When the process runs under ``opentelemetry-instrument`` the
tracer provider it installed is kept as is.
"""

from typing import Optional

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.aio_pika import AioPikaInstrumentor
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from relay.core.config import Settings
from relay.core.logging import get_logger

logger = get_logger(__name__)


def configure_tracer_provider(service_name: str, service_version: str) -> None:
    """Install an OTLP-exporting tracer provider unless one is already set."""
    if isinstance(trace.get_tracer_provider(), TracerProvider):
        return

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": service_version,
        }
    )
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter()))
    trace.set_tracer_provider(provider)


def setup_tracing(settings: Settings, app: Optional[FastAPI] = None) -> bool:
    """
    Instrument broker calls, and ``app`` if given, when tracing is enabled.

    Args:
        settings: Application settings
        app: FastAPI application to instrument

    Returns:
        True if instrumentation was applied
    """
    if not settings.enable_tracing:
        return False

    service_name = settings.tracing_service_name or settings.app_name
    configure_tracer_provider(service_name, settings.app_version)

    # The aio_pika instrumentor patches the library once per process
    instrumentor = AioPikaInstrumentor()
    if not instrumentor.is_instrumented_by_opentelemetry:
        instrumentor.instrument()

    if app is not None:
        FastAPIInstrumentor.instrument_app(app)

    logger.info("tracing_enabled", service_name=service_name, http=app is not None)
    return True
