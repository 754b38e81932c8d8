"""In-memory records that flow through one file's pipeline run."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, Literal, TypeVar

PlateType = Literal["particular", "moto", "comercial", "unknown"]

T = TypeVar("T")


@dataclass(frozen=True)
class PathMetadata:
    """Structural metadata encoded in a file path.

    ``capture_date`` is an ISO ``YYYY-MM-DD`` string reassembled from the
    DDMMYYYY path segment without calendar validation.
    """

    capture_date: str
    site_id: str
    photo_name: str


@dataclass
class HeaderFields:
    """Fields parsed from the header band; an empty string means not found."""

    date: str = ""
    time: str = ""
    location: str = ""
    speed_limit: str = ""
    measured_speed: str = ""

    def missing_critical(self) -> list[str]:
        missing: list[str] = []
        if not self.date:
            missing.append("date")
        if not self.time:
            missing.append("time")
        return missing


@dataclass
class PlateResult:
    """Outcome of the vision extractor.

    ``valid=False`` with an empty ``plate_text`` is the terminal value after
    retries are exhausted; ``error`` then carries the aggregated attempt errors.
    """

    plate_text: str = ""
    plate_type: PlateType = "unknown"
    valid: bool = False
    error: str | None = None

    @classmethod
    def exhausted(cls, error: str) -> "PlateResult":
        return cls(plate_text="", plate_type="unknown", valid=False, error=error)


@dataclass
class ExtractionResult(Generic[T]):
    """Uniform success/failure envelope shared by both extraction engines."""

    ok: bool
    value: T | None = None
    error: str | None = None
    elapsed_ms: float = 0.0

    @classmethod
    def success(cls, value: T, elapsed_ms: float = 0.0) -> "ExtractionResult[T]":
        return cls(ok=True, value=value, error=None, elapsed_ms=elapsed_ms)

    @classmethod
    def failure(cls, error: str, value: T | None = None, elapsed_ms: float = 0.0) -> "ExtractionResult[T]":
        return cls(ok=False, value=value, error=error, elapsed_ms=elapsed_ms)


@dataclass
class FusedOCRRecord:
    """Combined header + plate extraction for one image."""

    file_name: str
    header: HeaderFields = field(default_factory=HeaderFields)
    plate: PlateResult = field(default_factory=PlateResult)
    header_success: bool = False
    plate_success: bool = False
    errors: list[str] = field(default_factory=list)
    # Internal bookkeeping, never persisted.
    timings_ms: dict[str, float] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        """A record is complete only with a date, a time and a plate."""

        return bool(self.header.date and self.header.time and self.plate.plate_text)

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON document stored alongside the photo row."""

        vehicle: dict[str, Any] = {
            "plate": self.plate.plate_text,
            "type": self.plate.plate_type if self.plate.valid else None,
            "valid": self.plate.valid,
        }
        if self.plate.error:
            vehicle["rawText"] = self.plate.error

        return {
            "date": self.header.date,
            "time": self.header.time,
            "location": self.header.location,
            "speedLimit": self.header.speed_limit,
            "measuredSpeed": self.header.measured_speed,
            "vehicle": vehicle,
            "fileName": self.file_name,
            "processingInfo": {
                "headerOCRSuccess": self.header_success,
                "plateOCRSuccess": self.plate_success,
                "valid": self.is_valid,
                "errors": list(self.errors),
            },
        }


@dataclass
class MergedRecord:
    """Last in-memory representation before relocation and persistence."""

    final_date: str
    final_site_name: str
    photo_name: str
    persisted_payload: dict[str, Any]


__all__ = [
    "PlateType",
    "PathMetadata",
    "HeaderFields",
    "PlateResult",
    "ExtractionResult",
    "FusedOCRRecord",
    "MergedRecord",
]
