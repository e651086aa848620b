"""
RabbitMQ batch source built on aio-pika.

Deliveries are pulled with basic.get instead of a push subscription: the batch
service decides how many unacknowledged messages it holds, and nothing arrives
between batches.

States:
  DISCONNECTED -> CONNECTING -> CONNECTED -> CHANNEL_OPEN -> QUEUE_DECLARED -> READY
  READY -> RECONNECTING -> ... -> READY when the broker drops the connection
  any -> CLOSING -> CLOSED on close()

The broker's close callback can fire off the loop thread, so the reconnect task
is scheduled through call_soon_threadsafe. Every channel operation runs under
_lock; close() takes it too and never tears the channel down mid-poll.
"""
from __future__ import annotations

import asyncio
import uuid
from typing import Any, Mapping

import aio_pika
from loguru import logger

from batch_worker.app.config.settings import Settings
from batch_worker.app.core import SERVICE_NAME
from batch_worker.app.core.backoff import exponential_backoff
from batch_worker.app.infrastructure.messaging.rabbitmq.aio_pika_message_adapter import AioPikaMessageAdapter
from batch_worker.app.infrastructure.messaging.rabbitmq.constants import (
    CLASSIC_MAX_RECEIVE_COUNT,
    DEAD_LETTER_EXCHANGE_ARG,
    DEAD_LETTER_ROUTING_KEY_ARG,
    QUEUE_TYPE_ARG,
    ConsumerState,
)
from batch_worker.app.ports.incoming_message import IncomingMessage

POLL_INTERVAL_SECONDS = 0.05


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def build_queue_arguments(settings: Settings) -> dict[str, Any]:
    arguments: dict[str, Any] = {
        "x-max-length": settings.queue_max_length,
        "x-overflow": "reject-publish",
        QUEUE_TYPE_ARG: settings.queue_type,
    }
    if settings.dead_letter_exchange:
        arguments[DEAD_LETTER_EXCHANGE_ARG] = settings.dead_letter_exchange
        if settings.dead_letter_routing_key:
            arguments[DEAD_LETTER_ROUTING_KEY_ARG] = settings.dead_letter_routing_key
    return arguments


class RabbitMQConsumer:
    """MessageConsumer over a single durable queue."""

    def __init__(self, settings: Settings, *, poll_interval_seconds: float = POLL_INTERVAL_SECONDS) -> None:
        self._settings = settings
        self._poll_interval_seconds = poll_interval_seconds
        self._state = ConsumerState.DISCONNECTED
        self._connection: aio_pika.abc.AbstractRobustConnection | None = None
        self._channel: aio_pika.abc.AbstractChannel | None = None
        self._queue: aio_pika.abc.AbstractQueue | None = None
        self._lock = asyncio.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._closing = False

    @property
    def state(self) -> ConsumerState:
        return self._state

    def _backoff(self):
        return exponential_backoff(
            self._settings.initial_backoff_seconds,
            self._settings.max_backoff_seconds,
            self._settings.backoff_multiplier,
            self._settings.max_connection_attempts,
        )

    async def _dial(self) -> None:
        """Open connection, channel and queue; leaves the consumer READY."""
        connection = await aio_pika.connect_robust(
            host=self._settings.broker_host,
            port=self._settings.broker_port,
            login=self._settings.broker_user,
            password=self._settings.broker_password,
        )
        self._connection = connection
        self._loop = asyncio.get_running_loop()
        underlying = getattr(connection, "connection", connection)
        if callable(getattr(underlying, "add_close_callback", None)):
            underlying.add_close_callback(self._on_connection_lost)
        self._state = ConsumerState.CONNECTED

        self._channel = await connection.channel()
        self._state = ConsumerState.CHANNEL_OPEN
        self._queue = await self._channel.declare_queue(
            self._settings.queue_name,
            durable=True,
            arguments=build_queue_arguments(self._settings),
        )
        self._state = ConsumerState.QUEUE_DECLARED
        self._state = ConsumerState.READY

    async def _teardown(self) -> None:
        self._queue = None
        channel, self._channel = self._channel, None
        connection, self._connection = self._connection, None
        for name, resource in (("channel", channel), ("connection", connection)):
            if resource is None:
                continue
            try:
                await resource.close()
            except Exception as exc:
                logger.warning("rmq {} close failed: {}", name, exc)

    async def connect(self) -> None:
        self._state = ConsumerState.CONNECTING
        attempt = 0
        async for _ in self._backoff():
            attempt += 1
            try:
                await self._dial()
            except Exception as exc:
                logger.warning("rmq connect attempt {} failed: {}", attempt, exc)
                await self._teardown()
                if attempt >= self._settings.max_connection_attempts:
                    self._state = ConsumerState.DISCONNECTED
                    raise
                continue
            _log(
                "rmq_ready",
                queue=self._settings.queue_name,
                queue_type=self._settings.queue_type,
                attempts=attempt,
            )
            if (
                self._settings.queue_type == "classic"
                and self._settings.max_receive_count > CLASSIC_MAX_RECEIVE_COUNT
            ):
                logger.warning(
                    "classic queue {} reports at most {} receives; max_receive_count={} never dead-letters",
                    self._settings.queue_name,
                    CLASSIC_MAX_RECEIVE_COUNT,
                    self._settings.max_receive_count,
                )
            return

    def _on_connection_lost(self, *args: Any, **kwargs: Any) -> None:
        if self._closing or self._loop is None:
            return
        self._state = ConsumerState.RECONNECTING
        _log("rmq_connection_lost")
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return

        def schedule() -> None:
            self._reconnect_task = asyncio.create_task(self._reconnect_loop())

        self._loop.call_soon_threadsafe(schedule)

    async def _reconnect_loop(self) -> None:
        attempt = 0
        async for _ in self._backoff():
            if self._closing:
                return
            attempt += 1
            async with self._lock:
                if self._closing:
                    return
                await self._teardown()
                try:
                    await self._dial()
                except Exception as exc:
                    logger.warning("rmq reconnect attempt {} failed: {}", attempt, exc)
                    continue
            _log("rmq_reconnected", attempts=attempt)
            return
        _log("rmq_reconnect_exhausted", attempts=attempt)
        self._state = ConsumerState.DISCONNECTED

    async def receive_batch(self, max_messages: int, wait_seconds: float) -> list[IncomingMessage]:
        """Poll until max_messages are held or wait_seconds pass with nothing new.

        Returns as soon as the queue runs dry once at least one message is held.
        """
        if self._queue is None:
            raise RuntimeError("consumer not connected")
        loop = asyncio.get_running_loop()
        give_up_at = loop.time() + max(0.0, wait_seconds)
        deliveries: list[IncomingMessage] = []
        async with self._lock:
            while len(deliveries) < max_messages and self._queue is not None:
                raw = await self._queue.get(no_ack=False, fail=False)
                if raw is not None:
                    deliveries.append(AioPikaMessageAdapter(raw))
                    continue
                remaining = give_up_at - loop.time()
                if deliveries or remaining <= 0:
                    break
                await asyncio.sleep(min(self._poll_interval_seconds, remaining))
        return deliveries

    async def publish(self, body: bytes, attributes: Mapping[str, str] | None = None) -> None:
        if self._channel is None:
            raise RuntimeError("consumer not connected")
        message = aio_pika.Message(
            body=body,
            headers=dict(attributes or {}),
            message_id=uuid.uuid4().hex,
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        )
        async with self._lock:
            await self._channel.default_exchange.publish(message, routing_key=self._settings.queue_name)
        _log("message_published", message_id=message.message_id, queue=self._settings.queue_name)

    async def close(self) -> None:
        self._closing = True
        self._state = ConsumerState.CLOSING
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        async with self._lock:
            await self._teardown()
        self._state = ConsumerState.CLOSED
        _log("rmq_closed")
