"""Broker subscriber dispatching relay messages to a callback."""

import asyncio
import inspect
from typing import Awaitable, Callable, Union

from aio_pika.abc import AbstractChannel, AbstractIncomingMessage, AbstractQueue

from relay.core.errors import HandlerError
from relay.core.logging import get_logger
from relay.messaging.connection import BrokerConnection, bounded
from relay.messaging.topology import Topology, declare_subscription
from relay.monitoring.metrics import get_metrics_collector

logger = get_logger(__name__)

MessageHandler = Callable[[str], Union[None, Awaitable[None]]]


class Subscription:
    """Handle to a running consume loop."""

    def __init__(
        self,
        topology: Topology,
        queue_name: str,
        channel: AbstractChannel,
        task: "asyncio.Task[None]",
    ) -> None:
        self.topology = topology
        self.queue_name = queue_name
        self._channel = channel
        self._task = task

    @property
    def active(self) -> bool:
        """Check if the consume loop is still running."""
        return not self._task.done()

    async def wait(self) -> None:
        """Wait until the consume loop ends, re-raising its failure if any."""
        await self._task

    async def cancel(self) -> None:
        """Stop consuming and close the subscription channel."""
        if not self._task.done():
            self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning("subscription_ended_with_error", error=str(e))

        if not self._channel.is_closed:
            await self._channel.close()

        logger.info("subscription_cancelled", destination=self.topology.label)


class Subscriber:
    """
    Consumes messages from a queue or fanout exchange.

    Every message is acknowledged before the callback runs, so delivery is
    at-most-once: a failing callback never causes a redelivery and never
    stops the consume loop.
    """

    def __init__(self, connection: BrokerConnection) -> None:
        """
        Initialize subscriber.

        Args:
            connection: Broker connection manager
        """
        self.connection = connection
        self.metrics = get_metrics_collector()

    async def subscribe(self, topology: Topology, on_message: MessageHandler) -> Subscription:
        """
        Declare the destination and start consuming in a background task.

        Args:
            topology: Destination to consume from
            on_message: Called with each message decoded as text; may be async

        Returns:
            Subscription handle for the running consume loop

        Raises:
            BrokerConnectionError: If the broker cannot be reached
            DeclarationConflictError: If the destination exists with other properties
            BrokerTimeoutError: If setup exceeds the configured bound
        """
        channel = await self.connection.channel()
        try:
            queue = await declare_subscription(
                channel, topology, self.connection.operation_timeout
            )
        except Exception:
            if not channel.is_closed:
                await channel.close()
            raise

        task = asyncio.create_task(
            self._consume(queue, topology, on_message),
            name=f"relay-consumer-{topology.label}",
        )

        logger.info(
            "subscription_started",
            destination=topology.label,
            queue_name=queue.name,
        )
        return Subscription(topology, queue.name, channel, task)

    async def _consume(
        self, queue: AbstractQueue, topology: Topology, handler: MessageHandler
    ) -> None:
        try:
            async with queue.iterator() as queue_iter:
                async for message in queue_iter:
                    await self._process_message(message, topology, handler)
        except asyncio.CancelledError:
            logger.info("consumer_cancelled", destination=topology.label)
            raise
        except Exception as e:
            logger.error(
                "consumer_error", destination=topology.label, error=str(e), exc_info=True
            )
            raise

    async def _process_message(
        self,
        message: AbstractIncomingMessage,
        topology: Topology,
        handler: MessageHandler,
    ) -> None:
        """
        Acknowledge a single message, then hand it to the callback.

        Args:
            message: Incoming broker message
            topology: Destination the message came from
            handler: Message callback
        """
        await bounded(message.ack(), self.connection.operation_timeout, "ack")

        payload = message.body.decode("utf-8", errors="replace")
        self.metrics.record_message_consumed(topology.label)

        logger.debug(
            "message_acknowledged",
            destination=topology.label,
            delivery_tag=message.delivery_tag,
        )

        try:
            result = handler(payload)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            error = HandlerError(payload, e)
            self.metrics.record_handler_failed(topology.label)
            logger.error(
                "handler_failed",
                destination=topology.label,
                error=str(error),
                exc_info=error,
            )


def log_message(payload: str) -> None:
    """Default callback: log the received message text."""
    logger.info("message_received", message=payload)
