"""Application services."""

from relay.services.dispatcher import PublishDispatcher

__all__ = ["PublishDispatcher"]
