"""In-process run counters for OCR success rates and latency."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from violation_ingest.models import FusedOCRRecord


def _average(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _rate(count: int, total: int) -> float:
    return (count / total) * 100.0 if total else 0.0


@dataclass
class IngestStats:
    """Thread-safe counters shared by the pipeline and the queue workers.

    ``processed`` counts files whose OCR ran, whatever happened afterwards;
    ``completed`` counts files that reached the database.
    """

    processed: int = 0
    completed: int = 0
    header_success: int = 0
    plate_success: int = 0
    valid_records: int = 0
    header_ms: list[float] = field(default_factory=list)
    plate_ms: list[float] = field(default_factory=list)
    failed_files: list[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_ocr(self, record: FusedOCRRecord) -> None:
        with self._lock:
            self.processed += 1
            self.header_success += int(record.header_success)
            self.plate_success += int(record.plate_success)
            self.valid_records += int(record.is_valid)
            if "header" in record.timings_ms:
                self.header_ms.append(record.timings_ms["header"])
            if "plate" in record.timings_ms:
                self.plate_ms.append(record.timings_ms["plate"])

    def record_completed(self) -> None:
        with self._lock:
            self.completed += 1

    def record_failure(self, path: Path) -> None:
        with self._lock:
            self.failed_files.append(str(path))

    def summary(self) -> dict[str, Any]:
        with self._lock:
            return {
                "processed": self.processed,
                "completed": self.completed,
                "failed": len(self.failed_files),
                "header_success": self.header_success,
                "plate_success": self.plate_success,
                "valid_records": self.valid_records,
                "header_rate": round(_rate(self.header_success, self.processed), 1),
                "plate_rate": round(_rate(self.plate_success, self.processed), 1),
                "avg_header_ms": round(_average(self.header_ms), 1),
                "avg_plate_ms": round(_average(self.plate_ms), 1),
            }


__all__ = ["IngestStats"]
