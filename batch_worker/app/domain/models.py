"""Domain models."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from types import MappingProxyType
from typing import Any, Mapping

from batch_worker.app.constants import FAILURE_KIND, MESSAGE_STATUS


@dataclass(frozen=True)
class Message:
    """One inbound unit of work. The body is opaque to the processor."""

    message_id: str
    body: bytes | str
    attributes: Mapping[str, str] = field(default_factory=dict, hash=False)
    receive_count: int = 1

    def __post_init__(self) -> None:
        if not isinstance(self.message_id, str) or not self.message_id:
            raise TypeError("message.message_id must be a non-empty str")
        if not isinstance(self.body, (bytes, str)):
            raise TypeError("message.body must be bytes or str")
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    def body_text(self, encoding: str = "utf-8") -> str:
        if isinstance(self.body, bytes):
            return self.body.decode(encoding)
        return self.body


@dataclass(frozen=True)
class Batch:
    """Ordered messages delivered together."""

    messages: tuple[Message, ...]
    deadline: timedelta | None = None
    batch_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        object.__setattr__(self, "messages", tuple(self.messages))
        for message in self.messages:
            if not isinstance(message, Message):
                raise TypeError("batch.messages must contain Message instances")

    def __len__(self) -> int:
        return len(self.messages)


@dataclass(frozen=True)
class FailureDetail:
    kind: str
    reason: str
    error_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "reason": self.reason, "error_type": self.error_type}


@dataclass(frozen=True)
class ProcessingOutcome:
    """Per-message result. Duration is informational and ignored for equality."""

    message_id: str
    status: str
    failure: FailureDetail | None = None
    duration_seconds: float = field(default=0.0, compare=False)

    @property
    def succeeded(self) -> bool:
        return self.status == MESSAGE_STATUS.SUCCEEDED

    @property
    def attempted(self) -> bool:
        return self.failure is None or self.failure.kind != FAILURE_KIND.NOT_ATTEMPTED


@dataclass(frozen=True)
class FailedMessage:
    message_id: str
    failure: FailureDetail


@dataclass(frozen=True)
class BatchResult:
    """Aggregate report, in input order. The caller decides ack/retry/dead-letter."""

    batch_id: str
    outcomes: tuple[ProcessingOutcome, ...] = ()

    @staticmethod
    def from_outcomes(batch_id: str, outcomes: list[ProcessingOutcome]) -> "BatchResult":
        return BatchResult(batch_id=batch_id, outcomes=tuple(outcomes))

    @property
    def succeeded(self) -> tuple[str, ...]:
        return tuple(o.message_id for o in self.outcomes if o.succeeded)

    @property
    def failed(self) -> tuple[FailedMessage, ...]:
        return tuple(
            FailedMessage(message_id=o.message_id, failure=o.failure)
            for o in self.outcomes
            if not o.succeeded and o.failure is not None
        )

    @property
    def failed_ids(self) -> tuple[str, ...]:
        return tuple(f.message_id for f in self.failed)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def all_succeeded(self) -> bool:
        return all(o.succeeded for o in self.outcomes)

    def to_batch_item_failures(self) -> dict[str, list[dict[str, str]]]:
        """Partial batch response shape understood by SQS event source mappings."""
        return {"batchItemFailures": [{"itemIdentifier": mid} for mid in self.failed_ids]}

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "total": self.total,
            "succeeded": list(self.succeeded),
            "failed": [
                {"message_id": f.message_id, **f.failure.to_dict()} for f in self.failed
            ],
        }
