"""Worker composition root: build and lifecycle-manage concrete dependencies.

Composition may: import concrete classes, call factories, store interface types,
manage high-level lifecycle.
"""
from __future__ import annotations

from typing import Any

from loguru import logger

from batch_worker.app.application.batch_service import BatchService
from batch_worker.app.application.handlers import HttpForwardHandler, LoggingMessageHandler
from batch_worker.app.application.startup import StartupRoutine, greeting_task
from batch_worker.app.config.settings import Settings
from batch_worker.app.core import SERVICE_NAME
from batch_worker.app.domain.batch_processor import BatchProcessor
from batch_worker.app.infrastructure.http.factory import create_http_client
from batch_worker.app.infrastructure.messaging.factory import create_message_consumer
from batch_worker.app.infrastructure.persistence.factory import create_outcome_repository
from batch_worker.app.ports.http_client import AbstractHttpClient
from batch_worker.app.ports.message_consumer import MessageConsumer
from batch_worker.app.ports.message_handler import MessageHandler
from batch_worker.app.ports.outcome_repository import OutcomeRepository


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def create_message_handler(
    settings: Settings,
    http_client: AbstractHttpClient | None = None,
) -> MessageHandler:
    backend = settings.handler_backend.strip().lower()

    if backend == "logging":
        return LoggingMessageHandler()

    if backend == "http_forward":
        if http_client is None:
            raise ValueError("http_forward handler requires an http client")
        return HttpForwardHandler(
            http_client,
            settings.forward_url,
            connect_timeout_seconds=settings.forward_connect_timeout_seconds,
            read_timeout_seconds=settings.forward_read_timeout_seconds,
        )

    raise ValueError(f"Unsupported handler backend: {backend}")


class WorkerDependencies:
    """Holds wired worker dependencies and their lifecycle."""

    def __init__(self, *, settings: Settings) -> None:
        self._settings = settings
        self._repository: OutcomeRepository | None = None
        self._message_consumer: MessageConsumer | None = None
        self._http_client: AbstractHttpClient | None = None
        self._batch_service: BatchService | None = None
        self._startup: StartupRoutine | None = None
        self._connected = False

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def repository(self) -> OutcomeRepository | None:
        return self._repository

    @property
    def message_consumer(self) -> MessageConsumer:
        if self._message_consumer is None:
            raise RuntimeError("message_consumer is not initialized")
        return self._message_consumer

    @property
    def batch_service(self) -> BatchService:
        if self._batch_service is None:
            raise RuntimeError("batch_service is not initialized")
        return self._batch_service

    @property
    def startup(self) -> StartupRoutine:
        if self._startup is None:
            raise RuntimeError("startup routine is not initialized")
        return self._startup

    async def connect(self) -> None:
        self._repository = await create_outcome_repository(self._settings)

        self._message_consumer = create_message_consumer(self._settings)
        await self._message_consumer.connect()

        if self._settings.handler_backend.strip().lower() == "http_forward":
            self._http_client = create_http_client(self._settings)
        handler = create_message_handler(self._settings, self._http_client)

        self._batch_service = BatchService(
            self._message_consumer,
            BatchProcessor(max_concurrency=self._settings.max_concurrency),
            handler,
            batch_size=self._settings.batch_size,
            batch_wait_seconds=self._settings.batch_wait_seconds,
            batch_deadline_seconds=self._settings.batch_deadline_seconds,
            max_receive_count=self._settings.max_receive_count,
            repository=self._repository,
            idle_sleep_seconds=self._settings.idle_sleep_seconds,
        )

        self._startup = StartupRoutine()
        if self._settings.send_greeting_on_startup:
            self._startup.register("send_greeting", greeting_task(self._message_consumer))

        self._connected = True
        _log(
            "worker_dependencies_ready",
            consumer_backend=self._settings.consumer_backend,
            repository_backend=self._settings.repository_backend,
            handler_backend=self._settings.handler_backend,
        )

    async def close(self) -> None:
        if self._message_consumer is not None:
            try:
                await self._message_consumer.close()
            except Exception as exc:
                logger.warning("message consumer close failed: {}", exc)
            self._message_consumer = None

        if self._http_client is not None:
            try:
                await self._http_client.close()
            except Exception as exc:
                logger.warning("http client close failed: {}", exc)
            self._http_client = None

        if self._repository is not None:
            try:
                await self._repository.close()
            except Exception as exc:
                logger.warning("repository close failed: {}", exc)

        self._repository = None
        self._batch_service = None
        self._startup = None
        self._connected = False


def create_worker_dependencies(settings: Settings | None = None) -> WorkerDependencies:
    return WorkerDependencies(settings=settings or Settings())
