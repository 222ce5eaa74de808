"""In-memory stand-in for the parts of a RabbitMQ broker the relay talks to."""

import asyncio
import itertools
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from aio_pika import ExchangeType
from aio_pika.exceptions import ChannelPreconditionFailed


class FakeIncomingMessage:
    """Delivered message exposing the aio_pika incoming message surface."""

    def __init__(self, broker: "FakeBroker", body: bytes, delivery_tag: int) -> None:
        self._broker = broker
        self.body = body
        self.delivery_tag = delivery_tag
        self.acked = False

    async def ack(self) -> None:
        if self.acked:
            raise RuntimeError("Message already acknowledged")
        self.acked = True
        self._broker.acks.append(self.body)


class QueueState:
    """Broker-side queue with round-robin delivery to its consumers."""

    def __init__(
        self, name: str, durable: bool, exclusive: bool, auto_delete: bool
    ) -> None:
        self.name = name
        self.durable = durable
        self.exclusive = exclusive
        self.auto_delete = auto_delete
        self.ready: Deque[bytes] = deque()
        self.consumers: List["FakeQueueIterator"] = []
        self._next_consumer = 0

    def properties(self) -> tuple:
        return (self.durable, self.exclusive, self.auto_delete)

    def enqueue(self, body: bytes, broker: "FakeBroker") -> None:
        if not self.consumers:
            self.ready.append(body)
            return
        consumer = self.consumers[self._next_consumer % len(self.consumers)]
        self._next_consumer += 1
        consumer.deliver(FakeIncomingMessage(broker, body, next(broker.delivery_tags)))

    def add_consumer(self, consumer: "FakeQueueIterator", broker: "FakeBroker") -> None:
        self.consumers.append(consumer)
        while self.ready:
            self.enqueue(self.ready.popleft(), broker)


class ExchangeState:
    def __init__(self, name: str, type: ExchangeType, durable: bool) -> None:
        self.name = name
        self.type = type
        self.durable = durable
        self.bound: List[str] = []


class FakeExchange:
    """Client-side exchange handle."""

    def __init__(self, channel: "FakeChannel", name: str) -> None:
        self.channel = channel
        self.name = name

    async def publish(self, message: Any, routing_key: str, **kwargs: Any) -> None:
        broker = self.channel.broker
        if broker.publish_delay:
            await asyncio.sleep(broker.publish_delay)
        broker.route(self.name, routing_key, message)


class FakeQueueIterator:
    """Consumer on a queue, used as ``async with queue.iterator() as it``."""

    def __init__(self, queue: "FakeQueue") -> None:
        self.queue = queue
        self._deliveries: "asyncio.Queue[Any]" = asyncio.Queue()

    def deliver(self, item: Any) -> None:
        self._deliveries.put_nowait(item)

    async def __aenter__(self) -> "FakeQueueIterator":
        broker = self.queue.channel.broker
        broker.queues[self.queue.name].add_consumer(self, broker)
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        broker = self.queue.channel.broker
        state = broker.queues.get(self.queue.name)
        if state is None:
            return
        state.consumers.remove(self)
        while not self._deliveries.empty():
            item = self._deliveries.get_nowait()
            if isinstance(item, FakeIncomingMessage) and not item.acked:
                state.ready.appendleft(item.body)
        if state.auto_delete and not state.consumers:
            broker.delete_queue(state.name)

    def __aiter__(self) -> "FakeQueueIterator":
        return self

    async def __anext__(self) -> FakeIncomingMessage:
        item = await self._deliveries.get()
        if isinstance(item, BaseException):
            raise item
        return item


class FakeQueue:
    """Client-side queue handle."""

    def __init__(self, channel: "FakeChannel", name: str) -> None:
        self.channel = channel
        self.name = name

    async def bind(self, exchange: FakeExchange, routing_key: str = "", **kwargs: Any) -> None:
        self.channel.broker.exchanges[exchange.name].bound.append(self.name)

    def iterator(self, **kwargs: Any) -> FakeQueueIterator:
        return FakeQueueIterator(self)


class FakeChannel:
    def __init__(self, connection: "FakeConnection") -> None:
        self.connection = connection
        self.broker = connection.broker
        self.is_closed = False
        self._exclusive: List[str] = []

    @property
    def default_exchange(self) -> FakeExchange:
        return FakeExchange(self, "")

    def _conflict(self, reason: str) -> ChannelPreconditionFailed:
        self.is_closed = True
        return ChannelPreconditionFailed(f"PRECONDITION_FAILED - {reason}")

    async def declare_queue(
        self,
        name: Optional[str] = None,
        *,
        durable: bool = False,
        exclusive: bool = False,
        auto_delete: bool = False,
        **kwargs: Any,
    ) -> FakeQueue:
        self.broker.declarations.append(("queue", name))
        if not name:
            name = f"amq.gen-{next(self.broker.queue_ids)}"

        existing = self.broker.queues.get(name)
        if existing is not None:
            if existing.properties() != (durable, exclusive, auto_delete):
                raise self._conflict(f"inequivalent arg for queue '{name}'")
        else:
            self.broker.queues[name] = QueueState(name, durable, exclusive, auto_delete)
            if exclusive:
                self._exclusive.append(name)
        return FakeQueue(self, name)

    async def declare_exchange(
        self,
        name: str,
        type: ExchangeType = ExchangeType.DIRECT,
        *,
        durable: bool = False,
        **kwargs: Any,
    ) -> FakeExchange:
        self.broker.declarations.append(("exchange", name))
        existing = self.broker.exchanges.get(name)
        if existing is not None:
            if (existing.type, existing.durable) != (ExchangeType(type), durable):
                raise self._conflict(f"inequivalent arg for exchange '{name}'")
        else:
            self.broker.exchanges[name] = ExchangeState(name, ExchangeType(type), durable)
        return FakeExchange(self, name)

    async def close(self) -> None:
        if self.broker.channel_close_error is not None:
            raise self.broker.channel_close_error
        self.is_closed = True
        self.broker.closed_channels += 1
        for name in self._exclusive:
            self.broker.delete_queue(name)
        self._exclusive.clear()


class FakeConnection:
    def __init__(self, broker: "FakeBroker") -> None:
        self.broker = broker
        self.is_closed = False

    async def channel(self, **kwargs: Any) -> FakeChannel:
        if self.is_closed:
            raise RuntimeError("Connection closed")
        self.broker.opened_channels += 1
        self.broker.channel_options.append(kwargs)
        return FakeChannel(self)

    async def close(self) -> None:
        self.is_closed = True


class FakeBroker:
    """
    Broker double with named queues, the default exchange and fanout exchanges.

    ``connect`` has the signature of ``aio_pika.connect`` and can be injected
    as a connect factory.
    """

    def __init__(self) -> None:
        self.queues: Dict[str, QueueState] = {}
        self.exchanges: Dict[str, ExchangeState] = {}
        self.published: List[Dict[str, Any]] = []
        self.declarations: List[tuple] = []
        self.acks: List[bytes] = []
        self.connections: List[FakeConnection] = []
        self.opened_channels = 0
        self.closed_channels = 0
        self.channel_options: List[Dict[str, Any]] = []
        self.channel_close_error: Optional[BaseException] = None
        self.connect_attempts = 0
        self.unreachable = False
        self.failures_before_connect = 0
        self.connect_delay = 0.0
        self.publish_delay = 0.0
        self.delivery_tags = itertools.count(1)
        self.queue_ids = itertools.count(1)

    async def connect(self, url: str, **kwargs: Any) -> FakeConnection:
        self.connect_attempts += 1
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.unreachable:
            raise ConnectionRefusedError(111, "Connect call failed")
        if self.failures_before_connect > 0:
            self.failures_before_connect -= 1
            raise ConnectionRefusedError(111, "Connect call failed")
        connection = FakeConnection(self)
        self.connections.append(connection)
        return connection

    def route(self, exchange: str, routing_key: str, message: Any) -> None:
        self.published.append(
            {
                "exchange": exchange,
                "routing_key": routing_key,
                "body": message.body,
                "delivery_mode": message.delivery_mode,
            }
        )
        if exchange == "":
            targets = [routing_key] if routing_key in self.queues else []
        else:
            targets = list(self.exchanges[exchange].bound)

        for name in targets:
            state = self.queues.get(name)
            if state is not None:
                state.enqueue(message.body, self)

    def delete_queue(self, name: str) -> None:
        self.queues.pop(name, None)
        for exchange in self.exchanges.values():
            if name in exchange.bound:
                exchange.bound.remove(name)

    def fail_consumers(self, queue_name: str, error: BaseException) -> None:
        """Break every consume loop on a queue, as a dropped channel would."""
        for consumer in list(self.queues[queue_name].consumers):
            consumer.deliver(error)

    def consumer_count(self, queue_name: str) -> int:
        state = self.queues.get(queue_name)
        return len(state.consumers) if state else 0

    def bodies(self) -> List[bytes]:
        return [entry["body"] for entry in self.published]


