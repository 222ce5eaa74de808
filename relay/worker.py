#!/usr/bin/env python3
"""
Relay consumer process.

Subscribes to the configured destination and logs every message it
receives until interrupted.

Usage:
    python -m relay.worker
    python -m relay.worker --topology fanout --exchange logs
    python -m relay.worker --topology queue --queue tasks
"""

import argparse
import asyncio
import signal
import sys
from typing import Optional, Sequence

from relay.core.config import Settings, get_settings
from relay.core.logging import get_logger, setup_logging
from relay.messaging.connection import BrokerConnection, ConnectFactory
from relay.messaging.subscriber import MessageHandler, Subscriber, log_message
from relay.messaging.topology import Topology
from relay.monitoring.tracing import setup_tracing

logger = get_logger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command line overrides for the worker."""
    parser = argparse.ArgumentParser(
        description="Consume relayed messages and log them",
    )
    parser.add_argument(
        "--topology",
        choices=["queue", "fanout"],
        help="Broker topology (defaults to RELAY_TOPOLOGY)",
    )
    parser.add_argument("--queue", help="Work queue name (defaults to RELAY_QUEUE_NAME)")
    parser.add_argument(
        "--exchange", help="Fanout exchange name (defaults to RELAY_EXCHANGE_NAME)"
    )
    parser.add_argument("--rabbitmq-url", help="RabbitMQ connection URL")
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace, base: Optional[Settings] = None) -> Settings:
    """Apply command line overrides on top of the environment settings."""
    overrides = {
        "relay_topology": args.topology,
        "relay_queue_name": args.queue,
        "relay_exchange_name": args.exchange,
        "rabbitmq_url": args.rabbitmq_url,
    }
    base = base or get_settings()
    return base.model_copy(update={k: v for k, v in overrides.items() if v is not None})


async def run_worker(
    settings: Settings,
    handler: MessageHandler = log_message,
    connect_factory: Optional[ConnectFactory] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> int:
    """
    Consume until ``stop_event`` is set or the consume loop dies.

    Returns:
        Process exit code: 0 on requested shutdown, 1 when the subscription
        cannot be set up or stops on its own
    """
    topology = Topology.from_settings(settings)
    stop_event = stop_event or asyncio.Event()

    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            pass

    try:
        async with BrokerConnection.from_settings(settings, connect_factory) as broker:
            try:
                subscription = await Subscriber(broker).subscribe(topology, handler)
            except Exception as e:
                logger.error(
                    "worker_subscription_failed",
                    destination=topology.label,
                    error=str(e),
                    exc_info=True,
                )
                return 1

            logger.info(
                "worker_listening",
                destination=topology.label,
                queue_name=subscription.queue_name,
            )

            stopper = asyncio.create_task(stop_event.wait())
            consumer = asyncio.create_task(subscription.wait())
            done, _ = await asyncio.wait(
                {stopper, consumer}, return_when=asyncio.FIRST_COMPLETED
            )

            exit_code = 0
            if consumer in done:
                logger.error("worker_consumer_stopped", destination=topology.label)
                exit_code = 1

            stopper.cancel()
            await subscription.cancel()
            await asyncio.gather(stopper, consumer, return_exceptions=True)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)

    logger.info("worker_stopped", exit_code=exit_code)
    return exit_code


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Console entry point."""
    settings = build_settings(parse_args(argv))
    setup_logging(settings)
    setup_tracing(settings)
    return asyncio.run(run_worker(settings))


if __name__ == "__main__":
    sys.exit(main())
