"""In-memory consumer for local mode and tests.

Behaves like a single queue with manual acknowledgement: nack(requeue=True) puts the
message back at the tail with its receive count bumped, reject() moves it to
dead_letters.
"""
from __future__ import annotations

import asyncio
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Mapping

from batch_worker.app.ports.incoming_message import IncomingMessage


@dataclass
class _StoredMessage:
    message_id: str
    body: bytes
    attributes: dict[str, str] = field(default_factory=dict)
    receive_count: int = 0


class InMemoryDelivery:
    def __init__(self, consumer: "InMemoryConsumer", stored: _StoredMessage) -> None:
        self._consumer = consumer
        self._stored = stored
        self.settled: str | None = None

    @property
    def message_id(self) -> str:
        return self._stored.message_id

    @property
    def body(self) -> bytes:
        return self._stored.body

    @property
    def attributes(self) -> Mapping[str, str]:
        return dict(self._stored.attributes)

    @property
    def receive_count(self) -> int:
        return self._stored.receive_count

    def _settle(self, outcome: str) -> None:
        if self.settled is not None:
            raise RuntimeError(f"message {self.message_id} already {self.settled}")
        self.settled = outcome

    async def ack(self) -> None:
        self._settle("acked")
        self._consumer.acked.append(self._stored.message_id)

    async def nack(self, *, requeue: bool = True) -> None:
        self._settle("nacked")
        if requeue:
            self._consumer._pending.append(self._stored)
        else:
            self._consumer.dead_letters.append(self._stored.message_id)

    async def reject(self, *, requeue: bool = False) -> None:
        self._settle("rejected")
        if requeue:
            self._consumer._pending.append(self._stored)
        else:
            self._consumer.dead_letters.append(self._stored.message_id)


class InMemoryConsumer:
    def __init__(self) -> None:
        self._pending: deque[_StoredMessage] = deque()
        self.acked: list[str] = []
        self.dead_letters: list[str] = []
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    def enqueue(
        self,
        body: bytes | str,
        *,
        message_id: str | None = None,
        attributes: Mapping[str, str] | None = None,
    ) -> str:
        stored = _StoredMessage(
            message_id=message_id or uuid.uuid4().hex,
            body=body.encode() if isinstance(body, str) else body,
            attributes=dict(attributes or {}),
        )
        self._pending.append(stored)
        return stored.message_id

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def receive_batch(self, max_messages: int, wait_seconds: float) -> list[IncomingMessage]:
        if not self._pending and wait_seconds > 0:
            await asyncio.sleep(0)
        deliveries: list[IncomingMessage] = []
        while self._pending and len(deliveries) < max_messages:
            stored = self._pending.popleft()
            stored.receive_count += 1
            deliveries.append(InMemoryDelivery(self, stored))
        return deliveries

    async def publish(self, body: bytes, attributes: Mapping[str, str] | None = None) -> None:
        self.enqueue(body, attributes=attributes)

    async def close(self) -> None:
        self.connected = False
