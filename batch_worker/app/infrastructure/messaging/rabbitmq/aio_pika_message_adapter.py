"""Adapter: wrap aio_pika.IncomingMessage to implement ports.IncomingMessage."""
from __future__ import annotations

from typing import Any, Mapping

from aio_pika import IncomingMessage as AioPikaIncomingMessage

from batch_worker.app.infrastructure.messaging.rabbitmq.constants import DELIVERY_COUNT_HEADER


def _as_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return str(value)


class AioPikaMessageAdapter:
    """Implements batch_worker.app.ports.incoming_message.IncomingMessage for aio_pika."""

    def __init__(self, message: AioPikaIncomingMessage) -> None:
        self._message = message

    @property
    def message_id(self) -> str:
        if self._message.message_id:
            return str(self._message.message_id)
        return f"delivery-{self._message.delivery_tag}"

    @property
    def body(self) -> bytes:
        return self._message.body

    @property
    def attributes(self) -> Mapping[str, str]:
        attributes = {key: _as_text(value) for key, value in (self._message.headers or {}).items()}
        if self._message.content_type:
            attributes.setdefault("content_type", self._message.content_type)
        return attributes

    @property
    def receive_count(self) -> int:
        """Quorum queues count deliveries in a header; classic queues only flag redelivery."""
        headers = self._message.headers or {}
        raw = headers.get(DELIVERY_COUNT_HEADER)
        if raw is not None:
            try:
                return int(raw) + 1
            except (TypeError, ValueError):
                pass
        return 2 if self._message.redelivered else 1

    async def ack(self) -> None:
        await self._message.ack()

    async def nack(self, *, requeue: bool = True) -> None:
        await self._message.nack(requeue=requeue)

    async def reject(self, *, requeue: bool = False) -> None:
        await self._message.reject(requeue=requeue)
