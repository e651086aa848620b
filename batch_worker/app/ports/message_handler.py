"""Port: per-message work capability invoked by the batch processor."""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from batch_worker.app.domain.models import Message


@runtime_checkable
class MessageHandler(Protocol):
    """Processes exactly one message.

    Raise ProcessingError when the message cannot be processed. Handlers must not
    retry internally; redelivery is decided by whoever acknowledges the batch.
    """

    async def handle(self, message: Message) -> None: ...
