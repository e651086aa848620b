"""Mongo connection for the outcome store."""
from __future__ import annotations

import inspect
from typing import Any
from urllib.parse import quote_plus

from loguru import logger
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection

from batch_worker.app.config.settings import Settings
from batch_worker.app.core import SERVICE_NAME
from batch_worker.app.core.backoff import exponential_backoff


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def build_mongo_uri(settings: Settings) -> str:
    address = f"{settings.database_host}:{settings.database_port}"
    if not (settings.database_user and settings.database_password):
        return f"mongodb://{address}"
    credentials = f"{quote_plus(settings.database_user)}:{quote_plus(settings.database_password)}"
    return f"mongodb://{credentials}@{address}"


async def close_mongo_client(client: Any) -> None:
    res = client.close()
    if inspect.isawaitable(res):
        await res


async def _ping(settings: Settings) -> AsyncIOMotorClient:
    client = AsyncIOMotorClient(
        build_mongo_uri(settings),
        serverSelectionTimeoutMS=settings.database_connection_timeout_ms,
        appname=SERVICE_NAME,
    )
    try:
        await client.admin.command("ping")
    except Exception:
        await close_mongo_client(client)
        raise
    return client


async def open_outcome_collection(
    settings: Settings,
) -> tuple[AsyncIOMotorClient, AsyncIOMotorCollection]:
    """Return a pinged client and the configured outcome collection, retrying with backoff."""
    attempts = settings.max_connection_attempts
    attempt = 0
    async for _ in exponential_backoff(
        settings.initial_backoff_seconds,
        settings.max_backoff_seconds,
        settings.backoff_multiplier,
        attempts,
    ):
        attempt += 1
        try:
            client = await _ping(settings)
        except Exception as exc:
            logger.warning("mongo ping failed (attempt {}/{}): {}", attempt, attempts, exc)
            if attempt >= attempts:
                raise
            continue
        _log(
            "mongo_ready",
            database=settings.database_name,
            collection=settings.database_collection,
            attempts=attempt,
        )
        return client, client[settings.database_name][settings.database_collection]
    raise RuntimeError("mongo connect failed")
