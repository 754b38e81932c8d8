"""Exception hierarchy for the ingestion pipeline.

Every failure a single file can hit maps to one of these types so the
queue can catch them at the task boundary and keep going with siblings.
"""

from __future__ import annotations

from collections.abc import Sequence


class IngestError(Exception):
    """Base exception for all ingestion errors."""


class MalformedPathError(IngestError):
    """Raised when a file path does not encode a DDMMYYYY date segment."""


class ExtractionFailure(IngestError):
    """Raised when an OCR engine cannot produce a usable result."""


class CriticalFieldsMissingError(ExtractionFailure):
    """Raised when header OCR ran but the date and/or time fields are empty."""

    def __init__(self, missing: Sequence[str]) -> None:
        self.missing = tuple(missing)
        super().__init__(f"critical header fields not found: {', '.join(self.missing)}")


class ValidationFailure(ExtractionFailure):
    """Raised when an extracted value is present but fails its grammar."""


class PersistenceError(IngestError):
    """Raised when writing the site or photo record fails."""


class RelocationError(IngestError):
    """Raised when a processed file cannot be moved into the archive."""


__all__ = [
    "IngestError",
    "MalformedPathError",
    "ExtractionFailure",
    "CriticalFieldsMissingError",
    "ValidationFailure",
    "PersistenceError",
    "RelocationError",
]
