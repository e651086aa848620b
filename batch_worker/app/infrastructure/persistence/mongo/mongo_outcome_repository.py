"""MongoDB implementation of OutcomeRepository: one document per processed batch."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import DESCENDING

from batch_worker.app.domain.models import BatchResult
from batch_worker.app.infrastructure.persistence.mongo.connection import close_mongo_client


class MongoOutcomeRepository:
    """Concrete implementation of OutcomeRepository using MongoDB."""

    def __init__(self, collection: AsyncIOMotorCollection, *, client: Any | None = None) -> None:
        self._collection = collection
        self._client = client

    async def ensure_indexes(self) -> None:
        await self._collection.create_index("batch_id", unique=True, name="uq_outcome_batch_id")
        await self._collection.create_index([("recorded_at", DESCENDING)], name="idx_outcome_recorded_at")
        await self._collection.create_index("failed.message_id", name="idx_outcome_failed_message_id")

    async def record_batch(self, result: BatchResult) -> None:
        now = datetime.now(timezone.utc)
        document = result.to_dict()
        await self._collection.update_one(
            {"batch_id": result.batch_id},
            {
                "$setOnInsert": {"batch_id": result.batch_id, "recorded_at": now},
                "$set": {
                    "total": document["total"],
                    "succeeded": document["succeeded"],
                    "failed": document["failed"],
                    "succeeded_count": len(document["succeeded"]),
                    "failed_count": len(document["failed"]),
                    "updated_at": now,
                },
            },
            upsert=True,
        )

    async def get_batch(self, batch_id: str) -> dict[str, Any] | None:
        return await self._collection.find_one({"batch_id": batch_id}, {"_id": 0})

    async def close(self) -> None:
        """Close underlying Mongo client when owned by this adapter."""
        if self._client is not None:
            await close_mongo_client(self._client)
