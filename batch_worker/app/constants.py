"""Worker-level constants shared across modules."""
from __future__ import annotations


class MESSAGE_STATUS:
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class FAILURE_KIND:
    PROCESSING_ERROR = "PROCESSING_ERROR"
    DEADLINE_EXCEEDED = "DEADLINE_EXCEEDED"
    NOT_ATTEMPTED = "NOT_ATTEMPTED"


DEADLINE_EXCEEDED_REASON = "deadline exceeded"
NOT_ATTEMPTED_REASON = "not attempted: deadline exceeded"

# Allowed per-message transitions inside one process_batch call.
STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    MESSAGE_STATUS.PENDING: frozenset({MESSAGE_STATUS.PROCESSING, MESSAGE_STATUS.FAILED}),
    MESSAGE_STATUS.PROCESSING: frozenset({MESSAGE_STATUS.SUCCEEDED, MESSAGE_STATUS.FAILED}),
    MESSAGE_STATUS.SUCCEEDED: frozenset(),
    MESSAGE_STATUS.FAILED: frozenset(),
}
