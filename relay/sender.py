#!/usr/bin/env python3
"""
Send relay messages from the command line.

Publishes each message through the same topology the HTTP front door uses,
which makes it easy to exercise running consumers without the web server.

Usage:
    python -m relay.sender "Hello World!"
    python -m relay.sender --topology fanout --exchange logs first second
    python -m relay.sender --count 5 --delay 0.5 ping
"""

import argparse
import asyncio
import sys
from typing import Optional, Sequence

from relay.core.config import Settings, get_settings
from relay.core.errors import RelayError
from relay.core.logging import get_logger, setup_logging
from relay.messaging.connection import BrokerConnection, ConnectFactory
from relay.messaging.publisher import Publisher
from relay.messaging.topology import Topology
from relay.monitoring.tracing import setup_tracing
from relay.worker import build_settings

logger = get_logger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse sender arguments."""
    parser = argparse.ArgumentParser(
        description="Publish text messages to the relay destination",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Send the default greeting once
  python -m relay.sender

  # Broadcast two messages to every fanout consumer
  python -m relay.sender --topology fanout first second
        """,
    )
    parser.add_argument("messages", nargs="*", help="Message texts (defaults to the greeting)")
    parser.add_argument("--count", type=int, default=1, help="Times to send each message")
    parser.add_argument("--delay", type=float, default=0.0, help="Seconds between sends")
    parser.add_argument("--topology", choices=["queue", "fanout"], help="Broker topology")
    parser.add_argument("--queue", help="Work queue name")
    parser.add_argument("--exchange", help="Fanout exchange name")
    parser.add_argument("--rabbitmq-url", help="RabbitMQ connection URL")
    return parser.parse_args(argv)


async def send_messages(
    settings: Settings,
    messages: Sequence[str],
    count: int = 1,
    delay: float = 0.0,
    connect_factory: Optional[ConnectFactory] = None,
) -> int:
    """
    Publish every message ``count`` times, in order.

    Returns:
        Number of messages published
    """
    topology = Topology.from_settings(settings)
    outbox = [message for message in messages for _ in range(count)]
    sent = 0

    async with BrokerConnection.from_settings(settings, connect_factory) as broker:
        publisher = Publisher(broker)
        for i, message in enumerate(outbox, 1):
            await publisher.publish(topology, message)
            sent += 1
            if delay and i < len(outbox):
                await asyncio.sleep(delay)

    logger.info("messages_sent", destination=topology.label, count=sent)
    return sent


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Console entry point."""
    args = parse_args(argv)
    settings = build_settings(args, get_settings())
    setup_logging(settings)
    setup_tracing(settings)

    try:
        asyncio.run(
            send_messages(
                settings,
                args.messages or [settings.relay_greeting],
                count=args.count,
                delay=args.delay,
            )
        )
    except RelayError as e:
        logger.error("send_failed", error=str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
