"""Run the header and plate extractors side by side and fuse their output."""

from __future__ import annotations

import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Protocol, TypeVar

from utils.logging import get_logger
from violation_ingest.models import ExtractionResult, FusedOCRRecord, HeaderFields, PlateResult

LOGGER = get_logger(__name__, extra={"component": "fusion"})

T = TypeVar("T")

NO_PLATE_FOUND = "no plate found"


class HeaderSource(Protocol):
    def extract(self, image_path: Path) -> HeaderFields: ...


class PlateSource(Protocol):
    def extract(self, image_path: Path) -> PlateResult: ...


def _timed(call: Callable[[Path], T], image_path: Path) -> ExtractionResult[T]:
    """Run one extractor and fold its outcome into an :class:`ExtractionResult`."""

    started = time.perf_counter()
    try:
        value = call(image_path)
    except Exception as exc:  # noqa: BLE001
        elapsed = (time.perf_counter() - started) * 1000.0
        return ExtractionResult.failure(str(exc) or exc.__class__.__name__, elapsed_ms=elapsed)
    elapsed = (time.perf_counter() - started) * 1000.0
    return ExtractionResult.success(value, elapsed_ms=elapsed)


def fuse_results(
    file_name: str,
    header: ExtractionResult[HeaderFields],
    plate: ExtractionResult[PlateResult],
) -> FusedOCRRecord:
    """Combine both engine outcomes into one record.

    Header failures leave the fields empty and add a ``Header OCR`` error.
    A plate call that returns without a plate adds a ``Plate OCR: no plate
    found`` error, with the extractor's own error text appended when present.
    """

    record = FusedOCRRecord(file_name=file_name)
    record.timings_ms = {"header": header.elapsed_ms, "plate": plate.elapsed_ms}

    if header.ok and header.value is not None:
        record.header = header.value
        record.header_success = True
    else:
        record.errors.append(f"Header OCR: {header.error}")

    if not plate.ok or plate.value is None:
        record.errors.append(f"Plate OCR: {plate.error}")
        return record

    record.plate = plate.value
    if plate.value.plate_text:
        record.plate_success = True
    else:
        detail = f" ({plate.value.error})" if plate.value.error else ""
        record.errors.append(f"Plate OCR: {NO_PLATE_FOUND}{detail}")
    return record


class OCRFusion:
    """Invoke both extractors concurrently and collect each outcome independently."""

    def __init__(self, header_extractor: HeaderSource, plate_extractor: PlateSource) -> None:
        self._header = header_extractor
        self._plate = plate_extractor

    def process(self, image_path: Path) -> FusedOCRRecord:
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="ocr-fusion") as pool:
            header_future = pool.submit(_timed, self._header.extract, image_path)
            plate_future = pool.submit(_timed, self._plate.extract, image_path)
            header_result = header_future.result()
            plate_result = plate_future.result()

        record = fuse_results(image_path.name, header_result, plate_result)
        LOGGER.info(
            "ocr_fusion_complete",
            extra={
                "image": image_path.name,
                "header_success": record.header_success,
                "plate_success": record.plate_success,
                "valid": record.is_valid,
                "header_ms": round(header_result.elapsed_ms, 1),
                "plate_ms": round(plate_result.elapsed_ms, 1),
            },
        )
        return record


__all__ = ["NO_PLATE_FOUND", "HeaderSource", "PlateSource", "fuse_results", "OCRFusion"]
