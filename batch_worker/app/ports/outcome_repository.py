"""Abstract interface for batch outcome persistence (port)."""
from __future__ import annotations

from typing import Any, Protocol

from batch_worker.app.domain.models import BatchResult


class OutcomeRepository(Protocol):
    """Port: batch report persistence. Implementations live in infrastructure."""

    async def ensure_indexes(self) -> None: ...

    async def record_batch(self, result: BatchResult) -> None: ...

    async def get_batch(self, batch_id: str) -> dict[str, Any] | None: ...

    async def close(self) -> None:
        """Release resources (e.g. DB client). No-op allowed if nothing to close."""
        ...
