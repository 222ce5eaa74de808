"""RabbitMQ messaging infrastructure."""

from relay.messaging.connection import BrokerConnection
from relay.messaging.publisher import Publisher
from relay.messaging.subscriber import Subscriber, Subscription
from relay.messaging.topology import Topology, TopologyKind

__all__ = [
    "BrokerConnection",
    "Publisher",
    "Subscriber",
    "Subscription",
    "Topology",
    "TopologyKind",
]
