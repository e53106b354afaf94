"""Work storage errors.

Route handlers map these onto HTTP status codes; nothing below the HTTP layer
knows about status codes.
"""
from __future__ import annotations


class WorkError(Exception):
    """Base class for work storage errors."""


class WorkNotFoundError(WorkError):
    """Raised when no metadata record exists for a work id."""

    def __init__(self, work_id: str) -> None:
        self.work_id = work_id
        super().__init__(f"Work not found: {work_id}")


class InvalidInputError(WorkError):
    """Raised for missing or malformed image bytes or attributes."""


class StorageFailureError(WorkError):
    """Raised when an underlying read or write fails."""


class CorruptMetadataError(WorkError):
    """Raised when a metadata record exists but cannot be parsed."""

    def __init__(self, work_id: str, reason: str = "unparsable metadata") -> None:
        self.work_id = work_id
        self.reason = reason
        super().__init__(f"Corrupt metadata for work {work_id}: {reason}")
