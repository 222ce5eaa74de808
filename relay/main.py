"""Main FastAPI application (producer service)."""

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from relay.api import api_router
from relay.core.config import Settings, get_settings
from relay.core.logging import get_logger, setup_logging
from relay.messaging.connection import BrokerConnection, ConnectFactory
from relay.messaging.publisher import Publisher
from relay.messaging.subscriber import Subscriber, Subscription, log_message
from relay.messaging.topology import Topology
from relay.monitoring.metrics import get_metrics_collector, metrics_endpoint
from relay.monitoring.tracing import setup_tracing
from relay.services.dispatcher import PublishDispatcher

setup_logging()
logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    connect_factory: Optional[ConnectFactory] = None,
) -> FastAPI:
    """
    Build the producer application.

    Args:
        settings: Settings override, defaults to the cached environment settings
        connect_factory: Override for the broker connect call

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info(
            "application_starting",
            app_name=settings.app_name,
            version=settings.app_version,
            topology=settings.relay_topology,
        )

        async with BrokerConnection.from_settings(settings, connect_factory) as broker:
            topology = Topology.from_settings(settings)
            dispatcher = PublishDispatcher(Publisher(broker), topology)
            app.state.broker = broker
            app.state.dispatcher = dispatcher

            subscription: Optional[Subscription] = None
            if settings.relay_embedded_consumer:
                try:
                    subscription = await Subscriber(broker).subscribe(topology, log_message)
                    logger.info("embedded_consumer_started", destination=topology.label)
                except Exception as e:
                    logger.error("embedded_consumer_failed", error=str(e))

            yield

            logger.info("application_shutting_down")
            await dispatcher.drain(settings.relay_drain_timeout)
            if subscription is not None:
                await subscription.cancel()

        logger.info("application_shutdown_complete")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="HTTP front end relaying one broker message per request",
        docs_url="/docs" if not settings.is_production else None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests and collect metrics."""
        start_time = time.time()

        response = await call_next(request)

        duration = time.time() - start_time

        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration=f"{duration:.3f}s",
        )

        if settings.enable_metrics:
            get_metrics_collector().record_http_request(
                request.method, request.url.path, response.status_code
            )

        return response

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True,
        )

        return JSONResponse(
            status_code=500,
            content={
                "status_code": 500,
                "message": "Internal server error",
                "errors": [str(exc)] if settings.debug else ["An unexpected error occurred"],
            },
        )

    setup_tracing(settings, app)
    app.include_router(api_router)

    if settings.enable_metrics:
        app.get(settings.metrics_path, include_in_schema=False)(metrics_endpoint)

    return app


app = create_app()


def run() -> None:
    """Serve the producer application with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "relay.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=settings.is_development and settings.debug,
    )


if __name__ == "__main__":
    run()
