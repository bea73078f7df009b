"""
Exception types raised by the Receiving QC Service.
"""

from typing import Optional

from .config import ExtractionFailure, WorkflowPhase


class ReceivingError(Exception):
    """Base class for all receiving verification errors."""


class ExtractionError(ReceivingError):
    """Line item extraction failed; the message is safe to show to users."""

    def __init__(self, message: str, kind: ExtractionFailure = ExtractionFailure.UNKNOWN):
        super().__init__(message)
        self.kind = kind


class InvalidTransitionError(ReceivingError):
    """A workflow phase change was requested that the session cannot make."""

    def __init__(self, message: str, current: WorkflowPhase, target: Optional[WorkflowPhase] = None):
        super().__init__(message)
        self.current = current
        self.target = target


class IndexOutOfRangeError(ReceivingError, IndexError):
    """An item operation addressed a position that does not exist."""

    def __init__(self, index: int, count: int):
        super().__init__(f"Item index {index} out of range for {count} item(s)")
        self.index = index
        self.count = count


class ItemStateError(ReceivingError, ValueError):
    """An item operation's precondition does not hold."""


class RasterizationError(ReceivingError):
    """A source document could not be converted to page images."""


class StorageError(ReceivingError):
    """The report store could not read or write a report."""
