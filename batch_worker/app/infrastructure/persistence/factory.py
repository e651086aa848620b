"""Repository factory: selects and assembles persistence adapters."""
from __future__ import annotations

from batch_worker.app.config.settings import Settings
from batch_worker.app.infrastructure.persistence.inmemory.in_memory_outcome_repository import (
    InMemoryOutcomeRepository,
)
from batch_worker.app.infrastructure.persistence.mongo.connection import open_outcome_collection
from batch_worker.app.infrastructure.persistence.mongo.mongo_outcome_repository import MongoOutcomeRepository
from batch_worker.app.ports.outcome_repository import OutcomeRepository


async def create_outcome_repository(settings: Settings) -> OutcomeRepository | None:
    """Select repository adapter from configuration; None when outcomes are not recorded."""
    backend = settings.repository_backend.strip().lower()

    if backend in ("", "none"):
        return None
    if backend == "inmemory":
        return InMemoryOutcomeRepository()
    if backend == "mongo":
        mongo_client, collection = await open_outcome_collection(settings)
        repo = MongoOutcomeRepository(collection, client=mongo_client)
        await repo.ensure_indexes()
        return repo
    raise ValueError(f"Unsupported repository backend: {backend}")
