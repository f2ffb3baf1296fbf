"""RabbitMQ connection, subscription and publishing."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Set

import aio_pika
import orjson
from aio_pika.abc import AbstractChannel, AbstractIncomingMessage, AbstractRobustConnection
from aio_pika.exceptions import AMQPConnectionError
from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception_type, wait_fixed

LOGGER = logging.getLogger(__name__)

MessageCallback = Callable[[AbstractIncomingMessage], Awaitable[None]]


class Publisher(Protocol):
    """Anything that can put a JSON payload on a named queue."""

    async def publish(self, queue_name: str, payload: Dict[str, Any]) -> None:
        ...


class Broker:
    """Thin aio-pika wrapper with durable queues and manual acknowledgment."""

    def __init__(self, url: str, *, reconnect_delay: float = 5.0) -> None:
        self.url = url
        self.reconnect_delay = reconnect_delay
        self._connection: Optional[AbstractRobustConnection] = None
        self._publish_channel: Optional[AbstractChannel] = None
        self._declared: Set[str] = set()
        self._lock = asyncio.Lock()

    async def connect(self) -> AbstractRobustConnection:
        """Connect, retrying until the broker is reachable."""
        async with self._lock:
            if self._connection is None or self._connection.is_closed:
                self._connection = await self._connect_with_retry()
                LOGGER.info("Connected to RabbitMQ")
        return self._connection

    async def _connect_with_retry(self) -> AbstractRobustConnection:
        retrying = AsyncRetrying(
            wait=wait_fixed(self.reconnect_delay),
            retry=retry_if_exception_type((AMQPConnectionError, ConnectionError, OSError)),
            before_sleep=before_sleep_log(LOGGER, logging.WARNING),
        )
        return await retrying(aio_pika.connect_robust, self.url)

    async def subscribe(self, queue_name: str, prefetch: int, callback: MessageCallback) -> AbstractChannel:
        """Start delivering ``queue_name`` to ``callback`` on a dedicated channel.

        Prefetch is per channel, so each consumer gets its own.
        """
        connection = await self.connect()
        channel = await connection.channel()
        await channel.set_qos(prefetch_count=prefetch)
        queue = await channel.declare_queue(queue_name, durable=True)
        await queue.consume(callback, no_ack=False)
        LOGGER.info("%s: Listening for messages (prefetch=%d)", queue_name, prefetch)
        return channel

    async def publish(self, queue_name: str, payload: Dict[str, Any]) -> None:
        """Publish a persistent JSON message to ``queue_name``."""
        channel = await self._channel_for_publish()
        if queue_name not in self._declared:
            await channel.declare_queue(queue_name, durable=True)
            self._declared.add(queue_name)
        await channel.default_exchange.publish(
            aio_pika.Message(
                body=orjson.dumps(payload),
                content_type="application/json",
                delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            ),
            routing_key=queue_name,
        )
        LOGGER.debug("Message sent to queue %s: key=%s", queue_name, payload.get("key"))

    async def _channel_for_publish(self) -> AbstractChannel:
        connection = await self.connect()
        if self._publish_channel is None or self._publish_channel.is_closed:
            self._publish_channel = await connection.channel()
            self._declared.clear()
        return self._publish_channel

    async def close(self) -> None:
        if self._connection is not None and not self._connection.is_closed:
            await self._connection.close()
            LOGGER.info("RabbitMQ connection closed")
        self._connection = None
        self._publish_channel = None
