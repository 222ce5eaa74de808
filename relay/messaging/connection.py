"""Broker connection management."""

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractConnection
from aio_pika.exceptions import AMQPConnectionError

from relay.core.config import Settings
from relay.core.errors import BrokerConnectionError, BrokerTimeoutError, connect_retrying
from relay.core.logging import get_logger
from relay.monitoring.metrics import get_metrics_collector

logger = get_logger(__name__)

T = TypeVar("T")

ConnectFactory = Callable[..., Awaitable[AbstractConnection]]


async def bounded(awaitable: Awaitable[T], timeout: Optional[float], operation: str) -> T:
    """Await a broker call, failing with BrokerTimeoutError after ``timeout`` seconds."""
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as e:
        raise BrokerTimeoutError(operation, timeout) from e


class BrokerConnection:
    """
    Owns the single broker connection of a process.

    The connection is established lazily on first use and reused by every
    task afterwards. Channels are never cached: each publish or subscription
    opens its own. Use as an async context manager to tie the connection to
    the lifetime of the application.
    """

    def __init__(
        self,
        url: str,
        *,
        robust: bool = False,
        connect_timeout: float = 10.0,
        operation_timeout: Optional[float] = None,
        connect_attempts: int = 1,
        retry_min_wait: float = 1.0,
        retry_max_wait: float = 30.0,
        connect_factory: Optional[ConnectFactory] = None,
    ) -> None:
        """
        Initialize connection manager.

        Args:
            url: AMQP connection URL
            robust: Use aio_pika's auto-reconnecting connection
            connect_timeout: Seconds to wait for the broker handshake
            operation_timeout: Bound for channel and broker calls, None for unbounded
            connect_attempts: Connection attempts before giving up (1 = no retry)
            retry_min_wait: Minimum exponential backoff between attempts
            retry_max_wait: Maximum exponential backoff between attempts
            connect_factory: Override for ``aio_pika.connect``
        """
        self.url = url
        self.robust = robust
        self.connect_timeout = connect_timeout
        self.operation_timeout = operation_timeout
        self.connect_attempts = connect_attempts
        self.retry_min_wait = retry_min_wait
        self.retry_max_wait = retry_max_wait
        self._connect_factory = connect_factory or (
            aio_pika.connect_robust if robust else aio_pika.connect
        )
        self._connection: Optional[AbstractConnection] = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls, settings: Settings, connect_factory: Optional[ConnectFactory] = None
    ) -> "BrokerConnection":
        """Create a connection manager from application settings."""
        return cls(
            settings.rabbitmq_url,
            robust=settings.rabbitmq_robust_connection,
            connect_timeout=settings.rabbitmq_connect_timeout,
            operation_timeout=settings.operation_timeout,
            connect_attempts=settings.rabbitmq_connect_attempts,
            retry_min_wait=settings.rabbitmq_retry_min_wait,
            retry_max_wait=settings.rabbitmq_retry_max_wait,
            connect_factory=connect_factory,
        )

    async def __aenter__(self) -> "BrokerConnection":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def get_connection(self) -> AbstractConnection:
        """
        Return the cached connection, establishing it on first use.

        A plain connection that drops is not replaced: every later call
        fails until the connection is closed explicitly or the process
        restarts. Robust connections recover on their own.

        Raises:
            BrokerConnectionError: If the broker is unreachable or rejects
                the credentials after the configured attempts, or the
                plain connection was lost
        """
        if self.is_connected:
            return self._connection

        async with self._lock:
            if self._connection is not None:
                if self.robust or not self._connection.is_closed:
                    return self._connection
                logger.error("broker_connection_lost", url=self.safe_url)
                raise BrokerConnectionError("broker connection lost")

            async for attempt in connect_retrying(
                max_attempts=self.connect_attempts,
                min_wait=self.retry_min_wait,
                max_wait=self.retry_max_wait,
            ):
                with attempt:
                    self._connection = await self._connect()

        return self._connection

    async def _connect(self) -> AbstractConnection:
        logger.info("broker_connecting", url=self.safe_url, robust=self.robust)
        try:
            connection = await asyncio.wait_for(
                self._connect_factory(self.url), self.connect_timeout
            )
        except (AMQPConnectionError, OSError, asyncio.TimeoutError) as e:
            get_metrics_collector().record_connection_error()
            logger.error("broker_connection_failed", url=self.safe_url, error=repr(e))
            raise BrokerConnectionError(f"Failed to connect to broker: {e!r}") from e

        logger.info("broker_connected", url=self.safe_url)
        return connection

    async def channel(self, publisher_confirms: bool = True) -> AbstractChannel:
        """
        Open a new channel on the shared connection.

        Args:
            publisher_confirms: Wait for the broker's Basic.Ack on every publish
        """
        connection = await self.get_connection()
        return await bounded(
            connection.channel(publisher_confirms=publisher_confirms),
            self.operation_timeout,
            "open_channel",
        )

    async def close(self) -> None:
        """Close the connection if it was ever opened."""
        connection, self._connection = self._connection, None
        if connection is None or connection.is_closed:
            return

        try:
            await connection.close()
            logger.info("broker_disconnected")
        except Exception as e:
            logger.error("broker_disconnect_error", error=str(e))

    @property
    def is_connected(self) -> bool:
        """Check if the connection is established and open."""
        return self._connection is not None and not self._connection.is_closed

    @property
    def safe_url(self) -> str:
        """Connection URL with the password masked."""
        scheme, sep, rest = self.url.partition("://")
        credentials, at, host = rest.rpartition("@")
        if not at or ":" not in credentials:
            return self.url
        user = credentials.split(":", 1)[0]
        return f"{scheme}{sep}{user}:***@{host}"
