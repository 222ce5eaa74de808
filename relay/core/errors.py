"""Relay error taxonomy and retry policy."""

from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from relay.core.logging import get_logger

logger = get_logger(__name__)


class RelayError(Exception):
    """Base class for all relay errors."""


class BrokerConnectionError(RelayError, ConnectionError):
    """Broker unreachable or credentials rejected."""


class BrokerTimeoutError(RelayError):
    """A broker operation did not complete within the configured bound."""

    def __init__(self, operation: str, timeout: float) -> None:
        super().__init__(f"{operation} timed out after {timeout}s")
        self.operation = operation
        self.timeout = timeout


class DeclarationConflictError(RelayError):
    """Destination already exists with incompatible properties."""

    def __init__(self, destination: str, reason: str) -> None:
        super().__init__(f"Cannot declare {destination!r}: {reason}")
        self.destination = destination
        self.reason = reason


class HandlerError(RelayError):
    """
    Raised by a message callback.

    Carries the payload that was being handled and the original exception
    as ``__cause__``. Never changes the acknowledgment state of the message.
    """

    def __init__(self, payload: str, error: BaseException) -> None:
        super().__init__(f"Message handler failed: {error!r}")
        self.payload = payload
        self.__cause__ = error


def _log_retry(retry_state: RetryCallState) -> None:
    """Log a failed attempt before tenacity sleeps."""
    outcome = retry_state.outcome
    logger.warning(
        "broker_connect_retrying",
        attempt=retry_state.attempt_number,
        sleep=retry_state.next_action.sleep if retry_state.next_action else None,
        error=str(outcome.exception()) if outcome else None,
    )


def connect_retrying(
    max_attempts: int = 1,
    min_wait: float = 1.0,
    max_wait: float = 30.0,
    exceptions: tuple[type[BaseException], ...] = (BrokerConnectionError,),
) -> AsyncRetrying:
    """
    Retry policy for broker connection establishment.

    One attempt (no retry) unless configured otherwise. The last error is
    re-raised once attempts are exhausted.

    Usage:
        async for attempt in connect_retrying(max_attempts=3):
            with attempt:
                await connect()
    """
    kwargs: dict[str, Any] = {}
    if max_attempts > 1:
        kwargs["before_sleep"] = _log_retry

    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(exceptions),
        reraise=True,
        **kwargs,
    )
