"""Broker topology descriptors and idempotent destination declaration."""

from enum import Enum

from aio_pika import ExchangeType
from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractQueue
from aio_pika.exceptions import ChannelPreconditionFailed
from pydantic import BaseModel, Field

from relay.core.config import Settings
from relay.core.errors import DeclarationConflictError
from relay.core.logging import get_logger
from relay.messaging.connection import bounded

logger = get_logger(__name__)


class TopologyKind(str, Enum):
    """Delivery topologies supported by the relay."""

    QUEUE = "queue"  # point-to-point, one consumer per message
    FANOUT = "fanout"  # broadcast to every bound consumer


class Topology(BaseModel):
    """
    Static description of where messages go.

    Fixed at process start. ``name`` is the queue name for the queue
    topology and the exchange name for the fanout topology.
    """

    model_config = {"frozen": True}

    kind: TopologyKind
    name: str = Field(..., min_length=1)
    durable: bool = False

    @classmethod
    def queue(cls, name: str, durable: bool = False) -> "Topology":
        """Shared work queue topology."""
        return cls(kind=TopologyKind.QUEUE, name=name, durable=durable)

    @classmethod
    def fanout(cls, name: str, durable: bool = False) -> "Topology":
        """Fanout exchange topology."""
        return cls(kind=TopologyKind.FANOUT, name=name, durable=durable)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Topology":
        """Build the process topology from settings."""
        if settings.relay_topology == TopologyKind.FANOUT.value:
            return cls.fanout(settings.relay_exchange_name, settings.relay_durable_destinations)
        return cls.queue(settings.relay_queue_name, settings.relay_durable_destinations)

    @property
    def label(self) -> str:
        """Short destination label used in logs and metrics."""
        return f"{self.kind.value}:{self.name}"


async def _declare_exchange(
    channel: AbstractChannel, topology: Topology, timeout: float | None
) -> AbstractExchange:
    try:
        exchange = await bounded(
            channel.declare_exchange(
                topology.name, ExchangeType.FANOUT, durable=topology.durable
            ),
            timeout,
            "declare_exchange",
        )
    except ChannelPreconditionFailed as e:
        raise DeclarationConflictError(topology.name, str(e)) from e

    logger.debug("exchange_declared", exchange_name=topology.name, durable=topology.durable)
    return exchange


async def _declare_named_queue(
    channel: AbstractChannel, topology: Topology, timeout: float | None
) -> AbstractQueue:
    try:
        queue = await bounded(
            channel.declare_queue(topology.name, durable=topology.durable),
            timeout,
            "declare_queue",
        )
    except ChannelPreconditionFailed as e:
        raise DeclarationConflictError(topology.name, str(e)) from e

    logger.debug("queue_declared", queue_name=topology.name, durable=topology.durable)
    return queue


async def declare_destination(
    channel: AbstractChannel, topology: Topology, timeout: float | None = None
) -> tuple[AbstractExchange, str]:
    """
    Ensure the publish destination exists.

    Declaring an existing destination with identical properties is a no-op.

    Args:
        channel: Open channel to declare on
        topology: Destination description
        timeout: Bound for each broker call, None for unbounded

    Returns:
        Exchange to publish to and the routing key to use

    Raises:
        DeclarationConflictError: If the destination exists with other properties
    """
    if topology.kind is TopologyKind.FANOUT:
        exchange = await _declare_exchange(channel, topology, timeout)
        return exchange, ""

    await _declare_named_queue(channel, topology, timeout)
    return channel.default_exchange, topology.name


async def declare_subscription(
    channel: AbstractChannel, topology: Topology, timeout: float | None = None
) -> AbstractQueue:
    """
    Ensure the destination exists and return the queue to consume from.

    For the fanout topology a server-named, exclusive, auto-deleted queue is
    declared and bound to the exchange, so the consumer only sees messages
    published after this call returns.

    Raises:
        DeclarationConflictError: If the destination exists with other properties
    """
    if topology.kind is TopologyKind.QUEUE:
        return await _declare_named_queue(channel, topology, timeout)

    exchange = await _declare_exchange(channel, topology, timeout)
    queue = await bounded(
        channel.declare_queue(exclusive=True, auto_delete=True), timeout, "declare_queue"
    )
    await bounded(queue.bind(exchange, routing_key=""), timeout, "bind_queue")

    logger.debug("queue_bound", queue_name=queue.name, exchange_name=topology.name)
    return queue
