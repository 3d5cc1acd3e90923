"""Rejections raised by scheduling and tree operations.

Every rejection leaves the model exactly as it was before the operation.
"""


class TrackerError(ValueError):
    """Base class for rejected operations."""


class InvalidDateRange(TrackerError):
    """Start after due, an unparseable date, or a parent shrunk below its sub-tasks."""


class SchedulingConflict(TrackerError):
    """Two tasks with the same PIC would overlap; the change was rolled back."""

    def __init__(self, message, conflicts=None):
        super().__init__(message)
        self.conflicts = conflicts or []


class StructuralError(TrackerError, IndexError):
    """A move or lookup referenced a node that does not exist or cannot hold the item."""


class MalformedImportRow(TrackerError):
    """A CSV row could not be parsed; the whole import batch is discarded."""

    def __init__(self, message, row_number=None):
        super().__init__(message)
        self.row_number = row_number
