import asyncio

import pytest

from batch_worker.app.application.batch_service import BatchService
from batch_worker.app.domain.batch_processor import BatchProcessor
from batch_worker.app.infrastructure.messaging.rabbitmq.aio_pika_message_adapter import AioPikaMessageAdapter
from batch_worker.app.infrastructure.messaging.rabbitmq.constants import ConsumerState
from batch_worker.app.infrastructure.messaging.rabbitmq.rabbitmq_consumer import (
    RabbitMQConsumer,
    build_queue_arguments,
)
from tests.fakes import RecordingHandler


class _FakeRawMessage:
    def __init__(self, body=b"{}", *, message_id=None, headers=None, redelivered=False, delivery_tag=1):
        self.body = body
        self.message_id = message_id
        self.headers = headers or {}
        self.redelivered = redelivered
        self.delivery_tag = delivery_tag
        self.content_type = "application/json"
        self.settled = None

    async def ack(self):
        self.settled = "ack"

    async def nack(self, requeue=True):
        self.settled = ("nack", requeue)

    async def reject(self, requeue=False):
        self.settled = ("reject", requeue)


class _FakeQueue:
    def __init__(self, messages=None):
        self._messages = list(messages or [])
        self.get_calls = 0

    async def get(self, no_ack=False, fail=True):
        self.get_calls += 1
        if self._messages:
            return self._messages.pop(0)
        return None


class _FakeExchange:
    def __init__(self):
        self.published = []

    async def publish(self, message, routing_key):
        self.published.append((message, routing_key))


class _FakeChannel:
    def __init__(self, queue):
        self._queue = queue
        self.default_exchange = _FakeExchange()
        self.declared = []
        self.closed = False

    async def declare_queue(self, name, durable=True, arguments=None):
        self.declared.append((name, durable, arguments))
        return self._queue

    async def close(self):
        self.closed = True


class _FakeConnection:
    def __init__(self, channel):
        self._channel = channel
        self.connection = self
        self._callbacks = []
        self.closed = False

    async def channel(self):
        return self._channel

    def add_close_callback(self, cb):
        self._callbacks.append(cb)

    async def close(self):
        self.closed = True


class _Settings:
    broker_user = "guest"
    broker_password = "guest"
    broker_host = "localhost"
    broker_port = 5672
    queue_name = "batch_queue"
    queue_max_length = 1000
    queue_type = "quorum"
    max_receive_count = 3
    dead_letter_exchange = ""
    dead_letter_routing_key = ""
    initial_backoff_seconds = 0.0
    max_backoff_seconds = 0.0
    max_connection_attempts = 1
    backoff_multiplier = 2.0


def _patch_connect(monkeypatch, conn):
    async def _connect_robust(**kwargs):
        return conn

    import batch_worker.app.infrastructure.messaging.rabbitmq.rabbitmq_consumer as mod

    monkeypatch.setattr(mod.aio_pika, "connect_robust", _connect_robust)


@pytest.mark.asyncio
async def test_connect_declares_queue_and_sets_ready(monkeypatch):
    channel = _FakeChannel(_FakeQueue())
    _patch_connect(monkeypatch, _FakeConnection(channel))

    consumer = RabbitMQConsumer(_Settings())
    await consumer.connect()

    assert consumer.state == ConsumerState.READY
    name, durable, arguments = channel.declared[0]
    assert name == "batch_queue"
    assert durable is True
    assert arguments == {"x-max-length": 1000, "x-overflow": "reject-publish", "x-queue-type": "quorum"}


@pytest.mark.asyncio
async def test_connect_failure_raises_after_max_attempts(monkeypatch):
    async def _connect_robust(**kwargs):
        raise ConnectionError("refused")

    import batch_worker.app.infrastructure.messaging.rabbitmq.rabbitmq_consumer as mod

    monkeypatch.setattr(mod.aio_pika, "connect_robust", _connect_robust)
    consumer = RabbitMQConsumer(_Settings())

    with pytest.raises(ConnectionError):
        await consumer.connect()
    assert consumer.state == ConsumerState.DISCONNECTED


@pytest.mark.asyncio
async def test_receive_batch_rejected_when_not_connected():
    with pytest.raises(RuntimeError):
        await RabbitMQConsumer(_Settings()).receive_batch(5, 0.0)


@pytest.mark.asyncio
async def test_receive_batch_stops_at_max_messages(monkeypatch):
    queue = _FakeQueue([_FakeRawMessage(message_id=f"m{i}") for i in range(5)])
    _patch_connect(monkeypatch, _FakeConnection(_FakeChannel(queue)))
    consumer = RabbitMQConsumer(_Settings())
    await consumer.connect()

    batch = await consumer.receive_batch(3, 1.0)

    assert [d.message_id for d in batch] == ["m0", "m1", "m2"]
    assert queue.get_calls == 3


@pytest.mark.asyncio
async def test_receive_batch_returns_partial_when_queue_runs_dry(monkeypatch):
    queue = _FakeQueue([_FakeRawMessage(message_id="only")])
    _patch_connect(monkeypatch, _FakeConnection(_FakeChannel(queue)))
    consumer = RabbitMQConsumer(_Settings())
    await consumer.connect()

    batch = await consumer.receive_batch(10, 5.0)

    assert [d.message_id for d in batch] == ["only"]


@pytest.mark.asyncio
async def test_receive_batch_returns_empty_after_wait(monkeypatch):
    _patch_connect(monkeypatch, _FakeConnection(_FakeChannel(_FakeQueue())))
    consumer = RabbitMQConsumer(_Settings(), poll_interval_seconds=0.01)
    await consumer.connect()

    loop = asyncio.get_running_loop()
    started = loop.time()
    batch = await consumer.receive_batch(10, 0.05)

    assert batch == []
    assert loop.time() - started >= 0.04


@pytest.mark.asyncio
async def test_publish_sends_to_queue(monkeypatch):
    channel = _FakeChannel(_FakeQueue())
    _patch_connect(monkeypatch, _FakeConnection(channel))
    consumer = RabbitMQConsumer(_Settings())
    await consumer.connect()

    await consumer.publish(b'{"event":"GREETING"}', {"contentType": "application/json"})

    message, routing_key = channel.default_exchange.published[0]
    assert routing_key == "batch_queue"
    assert message.body == b'{"event":"GREETING"}'
    assert message.headers == {"contentType": "application/json"}


@pytest.mark.asyncio
async def test_close_transitions_to_closed(monkeypatch):
    channel = _FakeChannel(_FakeQueue())
    conn = _FakeConnection(channel)
    _patch_connect(monkeypatch, conn)
    consumer = RabbitMQConsumer(_Settings())
    await consumer.connect()

    await consumer.close()

    assert consumer.state == ConsumerState.CLOSED
    assert channel.closed is True
    assert conn.closed is True


def test_queue_arguments_include_dead_letter_settings():
    class _DlxSettings(_Settings):
        dead_letter_exchange = "dlx"
        dead_letter_routing_key = "batch_queue.dead"

    arguments = build_queue_arguments(_DlxSettings())

    assert arguments["x-dead-letter-exchange"] == "dlx"
    assert arguments["x-dead-letter-routing-key"] == "batch_queue.dead"


def test_adapter_receive_count_from_delivery_header():
    adapter = AioPikaMessageAdapter(_FakeRawMessage(headers={"x-delivery-count": 2}))
    assert adapter.receive_count == 3


def test_adapter_receive_count_from_redelivered_flag():
    assert AioPikaMessageAdapter(_FakeRawMessage(redelivered=True)).receive_count == 2
    assert AioPikaMessageAdapter(_FakeRawMessage()).receive_count == 1


def test_adapter_falls_back_to_delivery_tag_for_id_and_stringifies_headers():
    adapter = AioPikaMessageAdapter(_FakeRawMessage(headers={"source": b"orders", "n": 5}, delivery_tag=42))

    assert adapter.message_id == "delivery-42"
    assert adapter.attributes == {"source": "orders", "n": "5", "content_type": "application/json"}


def test_adapter_settlement_delegates_to_raw_message():
    raw = _FakeRawMessage()
    adapter = AioPikaMessageAdapter(raw)

    asyncio.run(adapter.nack(requeue=True))
    assert raw.settled == ("nack", True)
    asyncio.run(adapter.reject())
    assert raw.settled == ("reject", False)


@pytest.mark.asyncio
async def test_lost_connection_is_redialed(monkeypatch):
    dials = []

    async def _connect_robust(**kwargs):
        dials.append(kwargs)
        return _FakeConnection(_FakeChannel(_FakeQueue()))

    import batch_worker.app.infrastructure.messaging.rabbitmq.rabbitmq_consumer as mod

    monkeypatch.setattr(mod.aio_pika, "connect_robust", _connect_robust)
    consumer = RabbitMQConsumer(_Settings())
    await consumer.connect()

    consumer._on_connection_lost()
    assert consumer.state == ConsumerState.RECONNECTING
    for _ in range(50):
        if consumer.state == ConsumerState.READY:
            break
        await asyncio.sleep(0.01)

    assert consumer.state == ConsumerState.READY
    assert len(dials) == 2
    assert dials[0]["host"] == "localhost"
    await consumer.close()


class _QuorumQueue(_FakeQueue):
    """Redelivers nacked messages with x-delivery-count bumped, as a quorum queue does."""

    def __init__(self) -> None:
        super().__init__()
        self.delivered: list[_FakeRawMessage] = []

    async def get(self, no_ack=False, fail=True):
        raw = await super().get(no_ack=no_ack, fail=fail)
        if raw is not None:
            self.delivered.append(raw)
        return raw

    def push(self, deliveries: int, tag: int) -> None:
        headers = {"x-delivery-count": deliveries} if deliveries else {}
        queue = self

        class _Raw(_FakeRawMessage):
            async def nack(self, requeue=True):
                await super().nack(requeue=requeue)
                if requeue:
                    queue.push(deliveries + 1, tag + 1)

        self._messages.append(_Raw(message_id="poison", headers=headers, redelivered=deliveries > 0, delivery_tag=tag))


@pytest.mark.asyncio
async def test_failing_message_on_quorum_queue_reaches_dead_letter_threshold(monkeypatch):
    queue = _QuorumQueue()
    queue.push(0, 1)
    _patch_connect(monkeypatch, _FakeConnection(_FakeChannel(queue)))
    consumer = RabbitMQConsumer(_Settings())
    await consumer.connect()
    service = BatchService(
        consumer,
        BatchProcessor(),
        RecordingHandler(fail_ids={"poison"}),
        batch_size=5,
        batch_wait_seconds=0.0,
        batch_deadline_seconds=5.0,
        max_receive_count=3,
    )

    for _ in range(3):
        await service.run_once()

    assert [AioPikaMessageAdapter(raw).receive_count for raw in queue.delivered] == [1, 2, 3]
    assert [raw.settled for raw in queue.delivered] == [("nack", True), ("nack", True), ("reject", False)]
    assert await service.run_once() is None


def test_queue_type_is_declared():
    class _ClassicSettings(_Settings):
        queue_type = "classic"

    assert build_queue_arguments(_Settings())["x-queue-type"] == "quorum"
    assert build_queue_arguments(_ClassicSettings())["x-queue-type"] == "classic"
