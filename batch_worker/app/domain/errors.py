"""Error taxonomy for batch processing."""
from __future__ import annotations


class ContractViolation(ValueError):
    """Invalid arguments to the processor. Raised before any handler runs."""


class ProcessingError(Exception):
    """A single message could not be processed. Contained by the processor."""


class DeadlineExceeded(ProcessingError):
    """The batch-level deadline passed before the message finished."""
