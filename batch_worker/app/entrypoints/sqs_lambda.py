"""AWS Lambda entrypoint for SQS event source mappings.

Uses ReportBatchItemFailures: only the ids listed in batchItemFailures become
visible again on the queue; everything else is deleted by SQS. Redrive to a
dead-letter queue is left to the queue's redrive policy.
"""
from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any, Mapping

from loguru import logger

from batch_worker.app.composition import create_message_handler
from batch_worker.app.config.settings import Settings
from batch_worker.app.core import SERVICE_NAME
from batch_worker.app.domain.batch_processor import BatchProcessor
from batch_worker.app.domain.errors import ContractViolation
from batch_worker.app.domain.models import Batch, BatchResult, Message
from batch_worker.app.infrastructure.http.factory import create_http_client
from batch_worker.app.ports.http_client import AbstractHttpClient
from batch_worker.app.ports.message_handler import MessageHandler

RECEIVE_COUNT_ATTRIBUTE = "ApproximateReceiveCount"


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def record_to_message(record: Any) -> Message:
    if not isinstance(record, Mapping) or not record.get("messageId"):
        raise ContractViolation("SQS record without messageId")

    attributes = {str(k): str(v) for k, v in (record.get("attributes") or {}).items()}
    for name, value in (record.get("messageAttributes") or {}).items():
        if isinstance(value, Mapping) and value.get("stringValue") is not None:
            attributes[str(name)] = str(value["stringValue"])

    try:
        receive_count = int(attributes.get(RECEIVE_COUNT_ATTRIBUTE) or 1)
    except ValueError:
        receive_count = 1

    return Message(
        message_id=str(record["messageId"]),
        body=record.get("body") or "",
        attributes=attributes,
        receive_count=receive_count,
    )


def event_to_batch(event: Mapping[str, Any], context: Any = None) -> Batch:
    records = event.get("Records") or []
    if not isinstance(records, list):
        raise ContractViolation("event Records must be a list")
    request_id = getattr(context, "aws_request_id", "") if context else ""
    messages = tuple(record_to_message(record) for record in records)
    if request_id:
        return Batch(messages=messages, batch_id=str(request_id))
    return Batch(messages=messages)


def deadline_from_context(context: Any, settings: Settings) -> timedelta:
    """Remaining invocation time minus a safety margin; configured deadline without a context."""
    remaining = getattr(context, "get_remaining_time_in_millis", None)
    if callable(remaining):
        return timedelta(milliseconds=int(remaining()) - settings.lambda_deadline_margin_ms)
    return timedelta(seconds=settings.batch_deadline_seconds)


async def _process(batch: Batch, deadline: timedelta, settings: Settings, handler: MessageHandler | None) -> BatchResult:
    http_client: AbstractHttpClient | None = None
    if handler is None:
        if settings.handler_backend.strip().lower() == "http_forward":
            http_client = create_http_client(settings)
        handler = create_message_handler(settings, http_client)
    try:
        processor = BatchProcessor(max_concurrency=settings.max_concurrency)
        return await processor.process_batch(batch, handler, deadline)
    finally:
        if http_client is not None:
            try:
                await http_client.close()
            except Exception as exc:
                logger.warning("http client close failed: {}", exc)


def handle_event(
    event: Mapping[str, Any],
    context: Any = None,
    *,
    settings: Settings | None = None,
    handler: MessageHandler | None = None,
) -> dict[str, Any]:
    settings = settings or Settings()
    batch = event_to_batch(event, context)
    _log("sqs_event_received", batch_id=batch.batch_id, record_count=len(batch))
    if not batch.messages:
        return {"batchItemFailures": []}

    deadline = deadline_from_context(context, settings)
    result = asyncio.run(_process(batch, deadline, settings, handler))
    _log(
        "sqs_event_processed",
        batch_id=result.batch_id,
        succeeded=len(result.succeeded),
        failed=len(result.failed),
    )
    return result.to_batch_item_failures()


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    return handle_event(event, context)
