"""Broker topology, client and publisher."""

from jobsync.messaging.broker import BrokerClient, SyncPublisher
from jobsync.messaging.topology import QUEUES, SyncMessage, parse_routing_key, routing_key

__all__ = [
    "QUEUES",
    "BrokerClient",
    "SyncMessage",
    "SyncPublisher",
    "parse_routing_key",
    "routing_key",
]
