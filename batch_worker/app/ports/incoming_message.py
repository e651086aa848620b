"""Port: abstraction for an incoming queue message. Implementations live in infrastructure."""
from __future__ import annotations

from typing import Mapping, Protocol


class IncomingMessage(Protocol):
    """Transport-agnostic delivered message. Broker adapters implement it."""

    @property
    def message_id(self) -> str: ...

    @property
    def body(self) -> bytes: ...

    @property
    def attributes(self) -> Mapping[str, str]: ...

    @property
    def receive_count(self) -> int: ...

    async def ack(self) -> None: ...

    async def nack(self, *, requeue: bool = True) -> None: ...

    async def reject(self, *, requeue: bool = False) -> None: ...
