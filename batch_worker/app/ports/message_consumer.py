"""Port: queue consumer delivering bounded batches. Implementations live in infrastructure."""
from __future__ import annotations

from typing import Mapping, Protocol

from batch_worker.app.ports.incoming_message import IncomingMessage


class MessageConsumer(Protocol):
    async def connect(self) -> None: ...

    async def receive_batch(self, max_messages: int, wait_seconds: float) -> list[IncomingMessage]:
        """Return up to max_messages, waiting at most wait_seconds. Empty list when idle."""
        ...

    async def publish(self, body: bytes, attributes: Mapping[str, str] | None = None) -> None:
        """Enqueue one message on the consumed queue (used by startup tasks)."""
        ...

    async def close(self) -> None: ...
