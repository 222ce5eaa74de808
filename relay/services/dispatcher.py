"""Fire-and-forget publishing from the request path."""

import asyncio
from typing import Set

from relay.core.logging import get_logger
from relay.messaging.publisher import Publisher
from relay.messaging.topology import Topology
from relay.monitoring.metrics import get_metrics_collector

logger = get_logger(__name__)


class PublishDispatcher:
    """
    Runs each publish as an independent task.

    Callers never wait for the broker and never see publish errors; failures
    are captured when the task finishes and only logged.
    """

    def __init__(self, publisher: Publisher, topology: Topology) -> None:
        self.publisher = publisher
        self.topology = topology
        self.metrics = get_metrics_collector()
        self._pending: Set["asyncio.Task[None]"] = set()

    def dispatch(self, payload: str) -> "asyncio.Task[None]":
        """Schedule one publish and return immediately."""
        logger.info("message_dispatched", destination=self.topology.label, message=payload)

        task = asyncio.create_task(self.publisher.publish(self.topology, payload))
        self._pending.add(task)
        self.metrics.set_pending_publishes(len(self._pending))
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: "asyncio.Task[None]") -> None:
        self._pending.discard(task)
        self.metrics.set_pending_publishes(len(self._pending))

        if task.cancelled():
            logger.warning("publish_cancelled", destination=self.topology.label)
            return

        error = task.exception()
        if error is not None:
            logger.error(
                "publish_failed",
                destination=self.topology.label,
                error_type=type(error).__name__,
                error=str(error),
            )

    @property
    def pending(self) -> int:
        """Number of publishes still in flight."""
        return len(self._pending)

    async def drain(self, timeout: float) -> None:
        """Wait up to ``timeout`` seconds for in-flight publishes, then cancel the rest."""
        if not self._pending:
            return

        pending = set(self._pending)
        logger.info("dispatcher_draining", pending=len(pending), timeout=timeout)

        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning("dispatcher_drain_incomplete", cancelled=len(still_running))
