"""In-memory OutcomeRepository for local mode and tests."""
from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any

from batch_worker.app.domain.models import BatchResult


class InMemoryOutcomeRepository:
    def __init__(self) -> None:
        self._documents: dict[str, dict[str, Any]] = {}

    async def ensure_indexes(self) -> None:
        return

    async def record_batch(self, result: BatchResult) -> None:
        document = result.to_dict()
        document["recorded_at"] = datetime.now(timezone.utc)
        self._documents[result.batch_id] = document

    async def get_batch(self, batch_id: str) -> dict[str, Any] | None:
        document = self._documents.get(batch_id)
        return copy.deepcopy(document) if document is not None else None

    async def close(self) -> None:
        return
