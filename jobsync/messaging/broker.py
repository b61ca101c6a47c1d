"""RabbitMQ client and change-event publisher.

``BrokerClient`` owns one connection per process, opened at start and
closed on shutdown. Channels are created per consumer queue so each gets
its own unacknowledged-message limit.
"""

from __future__ import annotations

import logging
from typing import Optional

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractRobustConnection
from aio_pika.exceptions import AMQPConnectionError

from jobsync.config import BrokerConfig
from jobsync.core.errors import TransientInfraFailure
from jobsync.messaging.topology import QUEUES, SyncMessage, routing_key
from jobsync.sync.types import SyncAction

logger = logging.getLogger(__name__)


class BrokerClient:
    """Explicit broker connection with an open/close lifecycle."""

    def __init__(self, config: BrokerConfig):
        self.config = config
        self._connection: Optional[AbstractRobustConnection] = None

    @property
    def connection(self) -> AbstractRobustConnection:
        if self._connection is None:
            raise RuntimeError("BrokerClient is not open; call open() first")
        return self._connection

    async def open(self) -> BrokerClient:
        if self._connection is None:
            try:
                self._connection = await aio_pika.connect_robust(self.config.url)
            except (AMQPConnectionError, OSError) as e:
                raise TransientInfraFailure(f"Broker unreachable: {e}") from e
            logger.info(f"Connected to broker at {self.config.host}:{self.config.port}")
        return self

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    async def channel(self, prefetch: Optional[int] = None) -> AbstractChannel:
        """New channel; ``prefetch`` bounds its unacknowledged deliveries."""
        channel = await self.connection.channel()
        if prefetch:
            await channel.set_qos(prefetch_count=prefetch)
        return channel

    async def declare_exchange(self, channel: AbstractChannel) -> AbstractExchange:
        return await channel.declare_exchange(
            self.config.exchange, aio_pika.ExchangeType.TOPIC, durable=True
        )

    async def declare_topology(self) -> list[str]:
        """Declare the exchange, every queue and its bindings. Idempotent.

        Returns:
            Names of the declared queues
        """
        channel = await self.channel()
        try:
            exchange = await self.declare_exchange(channel)
            for spec in QUEUES:
                queue = await channel.declare_queue(spec.name, durable=True)
                for pattern in spec.bindings:
                    await queue.bind(exchange, routing_key=pattern)
                logger.debug(f"Declared {spec.name} bound to {', '.join(spec.bindings)}")
        finally:
            await channel.close()
        return [spec.name for spec in QUEUES]


class SyncPublisher:
    """Publishes change events for the upstream write path.

    A broker failure is logged and reported as False so the caller's own
    write is not undone; the backfill job repairs the gap. Unknown entities
    raise ValueError.
    """

    def __init__(self, broker: BrokerClient):
        self.broker = broker
        self._channel: Optional[AbstractChannel] = None
        self._exchange: Optional[AbstractExchange] = None

    async def _get_exchange(self) -> AbstractExchange:
        if self._exchange is None:
            self._channel = await self.broker.channel()
            self._exchange = await self.broker.declare_exchange(self._channel)
        return self._exchange

    async def publish_change(
        self, entity: str, action: SyncAction | str, natural_id: str
    ) -> bool:
        key = routing_key(entity, action)
        message = SyncMessage.for_change(action, natural_id)
        try:
            exchange = await self._get_exchange()
            await exchange.publish(
                aio_pika.Message(
                    body=message.encode(),
                    content_type="application/json",
                    delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
                ),
                routing_key=key,
            )
        except Exception as e:
            logger.error(f"Failed to publish {key} for {natural_id}: {e}")
            await self._reset_channel()
            return False

        logger.info(f"Published {key}: {natural_id}")
        return True

    async def _reset_channel(self) -> None:
        """Close the current channel, if any, so the next publish opens a fresh one."""
        channel, self._channel, self._exchange = self._channel, None, None
        if channel is None or channel.is_closed:
            return
        try:
            await channel.close()
        except Exception as e:
            logger.warning(f"Error closing publisher channel: {e}")

    async def close(self) -> None:
        await self._reset_channel()
