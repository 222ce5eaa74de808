"""Producer front door: every request relays one message to the broker."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse

from relay.core.config import Settings
from relay.services.dispatcher import PublishDispatcher

router = APIRouter()


def get_app_settings(request: Request) -> Settings:
    """Settings the running application was built with."""
    return request.app.state.settings


def get_dispatcher(request: Request) -> PublishDispatcher:
    """Publish dispatcher owned by the application lifespan."""
    return request.app.state.dispatcher


def describe_request(request: Request) -> str:
    """Message text describing an inbound request."""
    timestamp = datetime.now(timezone.utc).isoformat()
    return f"{request.method} {request.url.path} at {timestamp}"


@router.get("/", response_class=PlainTextResponse)
async def relay_root(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    dispatcher: PublishDispatcher = Depends(get_dispatcher),
) -> str:
    """
    Answer with the greeting and relay one message.

    The publish runs as a separate task; its outcome never changes the
    response.
    """
    if settings.relay_message_mode == "request":
        message = describe_request(request)
    else:
        message = settings.relay_greeting

    dispatcher.dispatch(message)
    return settings.relay_greeting
