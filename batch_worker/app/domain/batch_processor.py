"""Batch processor: run a handler over every message of a batch with failure isolation.

Each message gets exactly one ProcessingOutcome. A handler error is recorded as a
FAILED outcome for that message only; the batch keeps going. The deadline is a
hard ceiling for the whole batch:

  - the invocation still running when it passes is cancelled, abandoned and
    reported DEADLINE_EXCEEDED;
  - messages whose handler never started are reported NOT_ATTEMPTED.

With max_concurrency == 1 messages run strictly in input order. With a higher
value one task per message is gated by a semaphore; every task writes only its
own slot, and slots are merged in input order once the batch settles.

Acknowledgement is not done here; callers act on the returned BatchResult.
"""
from __future__ import annotations

import asyncio
import inspect
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from typing import Any

from loguru import logger

from batch_worker.app.constants import (
    DEADLINE_EXCEEDED_REASON,
    FAILURE_KIND,
    MESSAGE_STATUS,
    NOT_ATTEMPTED_REASON,
    STATUS_TRANSITIONS,
)
from batch_worker.app.core import SERVICE_NAME
from batch_worker.app.domain.errors import ContractViolation, DeadlineExceeded
from batch_worker.app.domain.models import Batch, BatchResult, FailureDetail, Message, ProcessingOutcome
from batch_worker.app.ports.message_handler import MessageHandler


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def _warn(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).warning("")


DEADLINE_FAILURE = FailureDetail(
    kind=FAILURE_KIND.DEADLINE_EXCEEDED,
    reason=DEADLINE_EXCEEDED_REASON,
    error_type=DeadlineExceeded.__name__,
)
NOT_ATTEMPTED_FAILURE = FailureDetail(
    kind=FAILURE_KIND.NOT_ATTEMPTED,
    reason=NOT_ATTEMPTED_REASON,
    error_type=DeadlineExceeded.__name__,
)


def failure_from_exception(exc: BaseException) -> FailureDetail:
    kind = FAILURE_KIND.DEADLINE_EXCEEDED if isinstance(exc, DeadlineExceeded) else FAILURE_KIND.PROCESSING_ERROR
    return FailureDetail(kind=kind, reason=str(exc) or type(exc).__name__, error_type=type(exc).__name__)


class _Slot:
    """Per-message state, written by exactly one task until sealed."""

    __slots__ = ("message", "status", "failure", "started_at", "finished_at", "sealed")

    def __init__(self, message: Message) -> None:
        self.message = message
        self.status = MESSAGE_STATUS.PENDING
        self.failure: FailureDetail | None = None
        self.started_at: float | None = None
        self.finished_at: float | None = None
        self.sealed = False

    def _move(self, status: str) -> None:
        if status not in STATUS_TRANSITIONS[self.status]:
            raise RuntimeError(
                f"illegal transition {self.status} -> {status} for message {self.message.message_id}"
            )
        self.status = status

    def start(self, now: float) -> None:
        self._move(MESSAGE_STATUS.PROCESSING)
        self.started_at = now

    def succeed(self, now: float) -> None:
        if self.sealed:
            return
        self._move(MESSAGE_STATUS.SUCCEEDED)
        self.finished_at = now

    def fail(self, failure: FailureDetail, now: float | None = None) -> None:
        if self.sealed:
            return
        self._move(MESSAGE_STATUS.FAILED)
        self.failure = failure
        self.finished_at = now

    def seal(self) -> None:
        """Resolve whatever is still open as a deadline failure and freeze the slot."""
        if self.status == MESSAGE_STATUS.PENDING:
            self.fail(NOT_ATTEMPTED_FAILURE)
        elif self.status == MESSAGE_STATUS.PROCESSING:
            self.fail(DEADLINE_FAILURE)
        self.sealed = True

    def to_outcome(self) -> ProcessingOutcome:
        duration = 0.0
        if self.started_at is not None and self.finished_at is not None:
            duration = max(0.0, self.finished_at - self.started_at)
        return ProcessingOutcome(
            message_id=self.message.message_id,
            status=self.status,
            failure=self.failure,
            duration_seconds=duration,
        )


def _discard_abandoned(task: asyncio.Future[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("abandoned handler invocation finished with error: {}", exc)


def _deadline_seconds(deadline: Any) -> float:
    if isinstance(deadline, timedelta):
        seconds = deadline.total_seconds()
    elif isinstance(deadline, (int, float)) and not isinstance(deadline, bool):
        seconds = float(deadline)
    else:
        raise ContractViolation(f"deadline must be a timedelta or seconds, got {type(deadline).__name__}")
    if seconds <= 0:
        raise ContractViolation("deadline must be positive")
    return seconds


class BatchProcessor:
    """Processes batches with per-message failure isolation and a batch-level deadline."""

    def __init__(self, *, max_concurrency: int = 1) -> None:
        if isinstance(max_concurrency, bool) or not isinstance(max_concurrency, int) or max_concurrency < 1:
            raise ContractViolation("max_concurrency must be an int >= 1")
        self._max_concurrency = max_concurrency

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    def _validate(self, batch: Any, handler: Any, deadline: Any) -> float:
        if batch is None:
            raise ContractViolation("batch is required")
        if not isinstance(batch, Batch):
            raise ContractViolation(f"batch must be a Batch, got {type(batch).__name__}")
        if handler is None or not callable(getattr(handler, "handle", None)):
            raise ContractViolation("handler must provide a callable handle(message)")
        if deadline is None:
            deadline = batch.deadline
        if deadline is None:
            raise ContractViolation("deadline is required")
        return _deadline_seconds(deadline)

    async def process_batch(
        self,
        batch: Batch,
        handler: MessageHandler,
        deadline: timedelta | float | None = None,
    ) -> BatchResult:
        """Run handler over batch.messages; never raises for a single message failure.

        deadline falls back to batch.deadline. Raises ContractViolation, before any
        handler invocation, for a missing batch/handler or a missing or non-positive
        deadline.
        """
        timeout = self._validate(batch, handler, deadline)
        if not batch.messages:
            _log("batch_empty", batch_id=batch.batch_id)
            return BatchResult(batch_id=batch.batch_id)

        loop = asyncio.get_running_loop()
        deadline_at = loop.time() + timeout
        slots = [_Slot(message) for message in batch.messages]
        _log(
            "batch_started",
            batch_id=batch.batch_id,
            size=len(slots),
            deadline_seconds=timeout,
            max_concurrency=self._max_concurrency,
        )

        # Blocking handlers run on worker threads so the deadline can abandon them.
        executor: ThreadPoolExecutor | None = None
        if not inspect.iscoroutinefunction(handler.handle):
            executor = ThreadPoolExecutor(
                max_workers=self._max_concurrency,
                thread_name_prefix="batch-handler",
            )
        try:
            if self._max_concurrency == 1:
                await self._run_sequential(slots, handler, loop, deadline_at, executor)
            else:
                await self._run_concurrent(slots, handler, loop, deadline_at, executor)
        finally:
            if executor is not None:
                executor.shutdown(wait=False, cancel_futures=True)

        result = BatchResult.from_outcomes(batch.batch_id, [slot.to_outcome() for slot in slots])
        _log(
            "batch_completed",
            batch_id=batch.batch_id,
            succeeded=len(result.succeeded),
            failed=len(result.failed),
        )
        return result

    async def _call(
        self,
        handler: MessageHandler,
        message: Message,
        loop: asyncio.AbstractEventLoop,
        executor: ThreadPoolExecutor | None,
    ) -> None:
        if executor is None:
            await handler.handle(message)
            return
        pending = await loop.run_in_executor(executor, handler.handle, message)
        if inspect.isawaitable(pending):
            await pending

    async def _invoke(
        self,
        slot: _Slot,
        handler: MessageHandler,
        loop: asyncio.AbstractEventLoop,
        executor: ThreadPoolExecutor | None,
    ) -> None:
        slot.start(loop.time())
        message_id = slot.message.message_id
        try:
            await self._call(handler, slot.message, loop, executor)
        except Exception as exc:
            slot.fail(failure_from_exception(exc), loop.time())
            _warn("message_failed", message_id=message_id, error=str(exc), error_type=type(exc).__name__)
        else:
            slot.succeed(loop.time())
            _log("message_succeeded", message_id=message_id)

    def _settle_interrupted(self, slot: _Slot, task: asyncio.Future[Any], now: float) -> None:
        """Fail a slot whose task finished without recording an outcome.

        Happens when the handler raises CancelledError on its own or a BaseException
        that is not an Exception; the processor has not cancelled anything yet.
        """
        if not task.done() or slot.status != MESSAGE_STATUS.PROCESSING:
            return
        exc = None if task.cancelled() else task.exception()
        error_type = type(exc).__name__ if exc is not None else asyncio.CancelledError.__name__
        slot.fail(
            FailureDetail(
                kind=FAILURE_KIND.PROCESSING_ERROR,
                reason=f"handler interrupted: {exc or error_type}",
                error_type=error_type,
            ),
            now,
        )
        _warn("message_interrupted", message_id=slot.message.message_id, error_type=error_type)

    async def _run_sequential(
        self,
        slots: list[_Slot],
        handler: MessageHandler,
        loop: asyncio.AbstractEventLoop,
        deadline_at: float,
        executor: ThreadPoolExecutor | None,
    ) -> None:
        for index, slot in enumerate(slots):
            remaining = deadline_at - loop.time()
            if remaining <= 0:
                self._expire(slots[index:])
                return
            task = asyncio.ensure_future(self._invoke(slot, handler, loop, executor))
            try:
                done, _ = await asyncio.wait({task}, timeout=remaining)
            except asyncio.CancelledError:
                task.cancel()
                raise
            if task not in done:
                self._abandon([task])
                self._expire(slots[index:])
                return
            self._settle_interrupted(slot, task, loop.time())
            slot.sealed = True

    async def _run_concurrent(
        self,
        slots: list[_Slot],
        handler: MessageHandler,
        loop: asyncio.AbstractEventLoop,
        deadline_at: float,
        executor: ThreadPoolExecutor | None,
    ) -> None:
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def run_one(slot: _Slot) -> None:
            async with semaphore:
                if loop.time() >= deadline_at:
                    return
                await self._invoke(slot, handler, loop, executor)

        tasks = [asyncio.ensure_future(run_one(slot)) for slot in slots]
        try:
            _, pending = await asyncio.wait(tasks, timeout=max(0.0, deadline_at - loop.time()))
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise
        now = loop.time()
        for slot, task in zip(slots, tasks):
            self._settle_interrupted(slot, task, now)
        if pending:
            self._abandon(list(pending))
        self._expire(slots)

    def _abandon(self, tasks: list[asyncio.Future[Any]]) -> None:
        for task in tasks:
            task.add_done_callback(_discard_abandoned)
            task.cancel()
        _warn("batch_deadline_exceeded", abandoned=len(tasks))

    def _expire(self, slots: list[_Slot]) -> None:
        for slot in slots:
            if slot.status in (MESSAGE_STATUS.PENDING, MESSAGE_STATUS.PROCESSING):
                _warn("message_deadline_exceeded", message_id=slot.message.message_id, status=slot.status)
            slot.seal()
