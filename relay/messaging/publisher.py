"""Broker publisher for relay messages."""

from typing import Union

import aio_pika
from aio_pika.abc import AbstractChannel

from relay.core.logging import get_logger
from relay.messaging.connection import BrokerConnection, bounded
from relay.messaging.topology import Topology, declare_destination
from relay.monitoring.metrics import get_metrics_collector

logger = get_logger(__name__)


class Publisher:
    """
    Sends text messages to a queue or fanout exchange.

    Fire-and-forget: no publisher confirms are awaited and messages are
    published non-persistent.
    """

    def __init__(self, connection: BrokerConnection) -> None:
        """
        Initialize publisher.

        Args:
            connection: Broker connection manager
        """
        self.connection = connection
        self.metrics = get_metrics_collector()

    async def publish(self, topology: Topology, payload: Union[str, bytes]) -> None:
        """
        Publish one message to the topology's destination.

        A fresh channel is opened for every call and closed afterwards.

        Args:
            topology: Destination to publish to
            payload: Message text (UTF-8 encoded) or raw bytes

        Raises:
            BrokerConnectionError: If the broker cannot be reached
            DeclarationConflictError: If the destination exists with other properties
            BrokerTimeoutError: If a broker call exceeds the configured bound
        """
        body = payload.encode("utf-8") if isinstance(payload, str) else payload
        timeout = self.connection.operation_timeout

        try:
            channel = await self.connection.channel(publisher_confirms=False)
            try:
                exchange, routing_key = await declare_destination(channel, topology, timeout)
                await bounded(
                    exchange.publish(
                        aio_pika.Message(
                            body=body,
                            delivery_mode=aio_pika.DeliveryMode.NOT_PERSISTENT,
                        ),
                        routing_key=routing_key,
                    ),
                    timeout,
                    "publish",
                )
            finally:
                await self._close_channel(channel, topology)
        except Exception:
            self.metrics.record_publish_failed(topology.label)
            raise

        self.metrics.record_message_published(topology.label)
        logger.info("message_published", destination=topology.label, size=len(body))

    async def _close_channel(self, channel: AbstractChannel, topology: Topology) -> None:
        if channel.is_closed:
            return
        try:
            await channel.close()
        except Exception as e:
            logger.warning(
                "publish_channel_close_error", destination=topology.label, error=str(e)
            )
