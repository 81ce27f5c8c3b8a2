"""
Error types for the QR attendance session core.

Components below the orchestration layer catch these at their boundary and
turn them into boolean/optional results; only the attendance manager and the
HTTP views turn them into user-facing messages.
"""


class AttendanceError(Exception):
    """Base class for all attendance core errors."""


class ValidationError(AttendanceError):
    """Missing or malformed input, such as an empty class id or token."""


class NotFoundError(AttendanceError):
    """No matching session, token or student."""


class StorageError(AttendanceError):
    """The persistence layer failed or is unavailable."""


class DuplicateRecordError(StorageError):
    """A unique constraint rejected an insert."""


class ConcurrencyConflict(AttendanceError):
    """A conditional write lost the race against another writer."""
