"""Hand-written fakes shared by unit tests."""
from __future__ import annotations

import asyncio
from typing import Any, Mapping

from batch_worker.app.domain.errors import ProcessingError
from batch_worker.app.domain.models import Batch, Message


class RecordingHandler:
    """Spy MessageHandler: records every invocation; fails for ids in fail_ids."""

    def __init__(
        self,
        *,
        fail_ids: set[str] | None = None,
        hang_ids: set[str] | None = None,
        delay_seconds: float = 0.0,
    ) -> None:
        self.fail_ids = fail_ids or set()
        self.hang_ids = hang_ids or set()
        self.delay_seconds = delay_seconds
        self.calls: list[str] = []
        self.completed: list[str] = []

    async def handle(self, message: Message) -> None:
        self.calls.append(message.message_id)
        if message.message_id in self.hang_ids:
            await asyncio.Event().wait()
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if message.message_id in self.fail_ids:
            raise ProcessingError(f"cannot process {message.message_id}")
        self.completed.append(message.message_id)


class FakeDelivery:
    """Implements IncomingMessage for tests; records how it was settled."""

    def __init__(
        self,
        message_id: str,
        body: bytes = b"{}",
        *,
        attributes: Mapping[str, str] | None = None,
        receive_count: int = 1,
        raise_on_ack: Exception | None = None,
    ) -> None:
        self.message_id = message_id
        self.body = body
        self.attributes = dict(attributes or {})
        self.receive_count = receive_count
        self.settled: str | None = None
        self.requeue: bool | None = None
        self._raise_on_ack = raise_on_ack

    async def ack(self) -> None:
        if self._raise_on_ack is not None:
            raise self._raise_on_ack
        self.settled = "ack"

    async def nack(self, *, requeue: bool = True) -> None:
        self.settled = "nack"
        self.requeue = requeue

    async def reject(self, *, requeue: bool = False) -> None:
        self.settled = "reject"
        self.requeue = requeue


class FakeConsumer:
    """Implements MessageConsumer; hands out the queued batches one call at a time."""

    def __init__(self, batches: list[list[Any]] | None = None) -> None:
        self._batches = list(batches or [])
        self.published: list[tuple[bytes, dict[str, str]]] = []
        self.receive_calls: list[tuple[int, float]] = []
        self.connected = False
        self.closed = False

    async def connect(self) -> None:
        self.connected = True

    async def receive_batch(self, max_messages: int, wait_seconds: float) -> list[Any]:
        self.receive_calls.append((max_messages, wait_seconds))
        if not self._batches:
            return []
        return self._batches.pop(0)[:max_messages]

    async def publish(self, body: bytes, attributes: Mapping[str, str] | None = None) -> None:
        self.published.append((body, dict(attributes or {})))

    async def close(self) -> None:
        self.closed = True


def make_batch(*ids: str, body: str = '{"type":"ORDER"}', **kwargs: Any) -> Batch:
    return Batch(messages=tuple(Message(message_id=i, body=body) for i in ids), **kwargs)
