"""Tests for the command line sender."""

import pytest

from relay.core.errors import BrokerConnectionError
from relay.sender import parse_args, send_messages


class TestSendMessages:
    async def test_sends_each_message_count_times_in_order(self, settings, fake_broker):
        sent = await send_messages(
            settings, ["A", "B"], count=2, connect_factory=fake_broker.connect
        )

        assert sent == 4
        assert fake_broker.bodies() == [b"A", b"A", b"B", b"B"]
        assert fake_broker.connections[0].is_closed is True

    async def test_fanout(self, settings, fake_broker):
        settings = settings.model_copy(update={"relay_topology": "fanout"})

        await send_messages(settings, ["hi"], connect_factory=fake_broker.connect)

        assert fake_broker.published[0]["exchange"] == "logs"

    async def test_unreachable_broker(self, settings, fake_broker):
        fake_broker.unreachable = True

        with pytest.raises(BrokerConnectionError):
            await send_messages(settings, ["A"], connect_factory=fake_broker.connect)


def test_parse_args():
    args = parse_args(["--count", "3", "--delay", "0.5", "--topology", "fanout", "x", "y"])

    assert args.messages == ["x", "y"]
    assert args.count == 3
    assert args.delay == 0.5
    assert args.topology == "fanout"
