"""One-shot tasks executed by the entry point before consumption starts."""
from __future__ import annotations

import json
from typing import Any, Awaitable, Callable

from loguru import logger

from batch_worker.app.core import SERVICE_NAME
from batch_worker.app.ports.message_consumer import MessageConsumer

StartupTask = Callable[[], Awaitable[None]]

GREETING_PAYLOAD = {"event": "GREETING", "text": "Hello, queue!"}


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class StartupRoutine:
    """Runs registered tasks once, in registration order. A failing task aborts startup."""

    def __init__(self) -> None:
        self._tasks: list[tuple[str, StartupTask]] = []
        self._completed = False

    @property
    def task_names(self) -> list[str]:
        return [name for name, _ in self._tasks]

    @property
    def completed(self) -> bool:
        return self._completed

    def register(self, name: str, task: StartupTask) -> None:
        if self._completed:
            raise RuntimeError("startup routine already ran")
        self._tasks.append((name, task))

    async def run(self) -> None:
        if self._completed:
            return
        for name, task in self._tasks:
            _log("startup_task_started", task=name)
            try:
                await task()
            except Exception as exc:
                logger.exception("startup task {} failed: {}", name, exc)
                raise
            _log("startup_task_finished", task=name)
        self._completed = True


def greeting_task(consumer: MessageConsumer) -> StartupTask:
    """Publish a demo greeting onto the worker's own queue."""

    async def send_greeting() -> None:
        await consumer.publish(
            json.dumps(GREETING_PAYLOAD).encode(),
            {"contentType": "application/json"},
        )

    return send_greeting
