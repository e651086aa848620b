from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from loguru import logger

from batch_worker.app.core import SERVICE_NAME
from batch_worker.app.domain.batch_processor import BatchProcessor
from batch_worker.app.domain.models import Batch, BatchResult, Message
from batch_worker.app.ports.incoming_message import IncomingMessage
from batch_worker.app.ports.message_consumer import MessageConsumer
from batch_worker.app.ports.message_handler import MessageHandler
from batch_worker.app.ports.outcome_repository import OutcomeRepository


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


@dataclass(frozen=True)
class AcknowledgementSummary:
    acked: int = 0
    requeued: int = 0
    dead_lettered: int = 0
    errors: int = 0


def to_domain_message(delivery: IncomingMessage) -> Message:
    return Message(
        message_id=delivery.message_id,
        body=delivery.body,
        attributes=dict(delivery.attributes),
        receive_count=delivery.receive_count,
    )


class BatchService:
    """
    Pulls a batch, runs the processor, then settles every delivery from the report.

    Succeeded -> ack. Failed with receive_count below max_receive_count -> nack with
    requeue so the broker redelivers in a later batch. Failed at the limit ->
    reject without requeue so the broker dead-letters it. Deliveries are matched
    to outcomes by position, so duplicate message ids settle correctly.
    """

    def __init__(
        self,
        consumer: MessageConsumer,
        processor: BatchProcessor,
        handler: MessageHandler,
        *,
        batch_size: int,
        batch_wait_seconds: float,
        batch_deadline_seconds: float,
        max_receive_count: int,
        repository: OutcomeRepository | None = None,
        idle_sleep_seconds: float = 0.5,
    ) -> None:
        self._consumer = consumer
        self._processor = processor
        self._handler = handler
        self._batch_size = batch_size
        self._batch_wait_seconds = batch_wait_seconds
        self._batch_deadline = timedelta(seconds=batch_deadline_seconds)
        self._max_receive_count = max_receive_count
        self._repository = repository
        self._idle_sleep_seconds = idle_sleep_seconds

    async def run_once(self) -> BatchResult | None:
        deliveries = await self._consumer.receive_batch(self._batch_size, self._batch_wait_seconds)
        if not deliveries:
            return None

        batch = Batch(
            messages=tuple(to_domain_message(d) for d in deliveries),
            deadline=self._batch_deadline,
        )
        _log("batch_received", batch_id=batch.batch_id, size=len(batch))
        result = await self._processor.process_batch(batch, self._handler)
        summary = await self._acknowledge(deliveries, result)
        _log(
            "batch_acknowledged",
            batch_id=result.batch_id,
            acked=summary.acked,
            requeued=summary.requeued,
            dead_lettered=summary.dead_lettered,
            errors=summary.errors,
            not_attempted=sum(1 for o in result.outcomes if not o.attempted),
        )
        await self._record(result)
        return result

    async def _acknowledge(
        self, deliveries: list[IncomingMessage], result: BatchResult
    ) -> AcknowledgementSummary:
        acked = requeued = dead_lettered = errors = 0
        for delivery, outcome in zip(deliveries, result.outcomes):
            try:
                if outcome.succeeded:
                    await delivery.ack()
                    acked += 1
                elif delivery.receive_count >= self._max_receive_count:
                    await delivery.reject(requeue=False)
                    dead_lettered += 1
                    _log(
                        "message_dead_lettered",
                        message_id=delivery.message_id,
                        receive_count=delivery.receive_count,
                        reason=outcome.failure.reason if outcome.failure else None,
                    )
                else:
                    await delivery.nack(requeue=True)
                    requeued += 1
            except Exception as exc:
                errors += 1
                logger.warning("acknowledgement failed for message {}: {}", delivery.message_id, exc)
        return AcknowledgementSummary(
            acked=acked, requeued=requeued, dead_lettered=dead_lettered, errors=errors
        )

    async def _record(self, result: BatchResult) -> None:
        if self._repository is None:
            return
        try:
            await self._repository.record_batch(result)
        except Exception as exc:
            logger.warning("recording batch {} failed: {}", result.batch_id, exc)

    async def run_forever(self, stop: asyncio.Event) -> None:
        _log("batch_loop_started", batch_size=self._batch_size)
        while not stop.is_set():
            try:
                result = await self.run_once()
            except Exception as exc:
                logger.exception("batch iteration failed: {}", exc)
                result = None
            if result is None:
                try:
                    await asyncio.wait_for(stop.wait(), timeout=self._idle_sleep_seconds)
                except asyncio.TimeoutError:
                    pass
        _log("batch_loop_stopped")
