import asyncio

import pytest

from batch_worker.app.application.handlers import HttpForwardHandler, LoggingMessageHandler
from batch_worker.app.composition import create_message_handler, create_worker_dependencies
from batch_worker.app.config.settings import Settings
from batch_worker.app.infrastructure.messaging.factory import create_message_consumer
from batch_worker.app.infrastructure.messaging.inmemory.in_memory_consumer import InMemoryConsumer
from batch_worker.app.infrastructure.persistence.factory import create_outcome_repository
from batch_worker.app.main import run_worker


def _local_settings(**overrides) -> Settings:
    values = {
        "consumer_backend": "inmemory",
        "repository_backend": "inmemory",
        "handler_backend": "logging",
        "batch_wait_seconds": 0.0,
        "idle_sleep_seconds": 0.01,
    }
    values.update(overrides)
    return Settings(**values)


def test_unknown_backends_are_rejected():
    with pytest.raises(ValueError):
        create_message_consumer(_local_settings(consumer_backend="kafka"))
    with pytest.raises(ValueError):
        asyncio.run(create_outcome_repository(_local_settings(repository_backend="postgres")))
    with pytest.raises(ValueError):
        create_message_handler(_local_settings(handler_backend="smtp"))


def test_repository_backend_none_disables_recording():
    assert asyncio.run(create_outcome_repository(_local_settings(repository_backend="none"))) is None


def test_handler_selection():
    assert isinstance(create_message_handler(_local_settings()), LoggingMessageHandler)

    class _Client:
        async def deliver(self, *args, **kwargs):
            raise AssertionError("not called")

        async def close(self):
            return None

    forward = create_message_handler(
        _local_settings(handler_backend="http_forward", forward_url="https://hooks.local/in"), _Client()
    )
    assert isinstance(forward, HttpForwardHandler)
    with pytest.raises(ValueError):
        create_message_handler(_local_settings(handler_backend="http_forward", forward_url="https://x"))


def test_accessors_fail_before_connect():
    dependencies = create_worker_dependencies(_local_settings())

    with pytest.raises(RuntimeError):
        dependencies.batch_service
    with pytest.raises(RuntimeError):
        dependencies.message_consumer


@pytest.mark.asyncio
async def test_greeting_is_published_processed_and_recorded():
    dependencies = create_worker_dependencies(_local_settings(send_greeting_on_startup=True))
    await dependencies.connect()
    try:
        assert dependencies.startup.task_names == ["send_greeting"]
        await dependencies.startup.run()

        result = await dependencies.batch_service.run_once()

        assert result is not None
        assert result.all_succeeded is True
        consumer = dependencies.message_consumer
        assert isinstance(consumer, InMemoryConsumer)
        assert consumer.acked == list(result.succeeded)
        stored = await dependencies.repository.get_batch(result.batch_id)
        assert stored is not None and stored["total"] == 1
    finally:
        await dependencies.close()

    assert dependencies.connected is False


@pytest.mark.asyncio
async def test_poison_message_is_requeued_then_dead_lettered():
    dependencies = create_worker_dependencies(_local_settings(max_receive_count=2))
    await dependencies.connect()
    try:
        consumer = dependencies.message_consumer
        consumer.enqueue('{"broken": ', message_id="poison")
        consumer.enqueue('{"type":"ORDER"}', message_id="fine")

        first = await dependencies.batch_service.run_once()
        second = await dependencies.batch_service.run_once()
        third = await dependencies.batch_service.run_once()

        assert first.succeeded == ("fine",) and first.failed_ids == ("poison",)
        assert second.failed_ids == ("poison",)
        assert third is None
        assert consumer.acked == ["fine"]
        assert consumer.dead_letters == ["poison"]
    finally:
        await dependencies.close()


@pytest.mark.asyncio
async def test_run_worker_stops_on_shutdown_event():
    shutdown = asyncio.Event()
    task = asyncio.create_task(run_worker(_local_settings(send_greeting_on_startup=True), shutdown))
    await asyncio.sleep(0.05)
    shutdown.set()

    await asyncio.wait_for(task, timeout=2.0)

    assert task.exception() is None
