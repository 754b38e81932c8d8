"""Per-file pipeline: path metadata, OCR fusion, merge, relocation, persistence."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from utils.logging import get_logger
from violation_ingest.fusion import OCRFusion
from violation_ingest.merge import FallbackMergeResolver
from violation_ingest.models import FusedOCRRecord, MergedRecord
from violation_ingest.path_metadata import resolve_path_metadata_from_file
from violation_ingest.persistence import PersistenceWriter
from violation_ingest.relocation import FileRelocator
from violation_ingest.stats import IngestStats

LOGGER = get_logger(__name__, extra={"component": "pipeline"})


@dataclass
class IngestOutcome:
    """Result of one successful pipeline run."""

    source: Path
    destination: Path
    photo_path: str
    record: FusedOCRRecord
    merged: MergedRecord
    inserted: bool


class IngestionPipeline:
    """Drive one photo from the intake tree into the archive and the database.

    Relocation happens before persistence so a stored row never points at a
    path the file failed to reach. Errors propagate to the caller.
    """

    def __init__(
        self,
        fusion: OCRFusion,
        resolver: FallbackMergeResolver,
        relocator: FileRelocator,
        writer: PersistenceWriter,
        watch_root: Path | None = None,
        stats: IngestStats | None = None,
    ) -> None:
        self.fusion = fusion
        self.resolver = resolver
        self.relocator = relocator
        self.writer = writer
        self.watch_root = watch_root
        self.stats = stats

    def process_file(self, path: Path) -> IngestOutcome:
        path = Path(path)
        LOGGER.info("ingest_file_started", extra={"file_path": str(path)})

        path_meta = resolve_path_metadata_from_file(path, self.watch_root)
        record = self.fusion.process(path)
        if self.stats is not None:
            self.stats.record_ocr(record)
        merged = self.resolver.merge(path_meta, record)

        destination = self.relocator.relocate(path, merged.final_site_name)
        photo_path = self.relocator.to_relative_path(destination)
        inserted = self.writer.write(merged, photo_path)

        LOGGER.info(
            "ingest_file_complete",
            extra={
                "file_path": str(path),
                "photo_path": photo_path,
                "photo_date": merged.final_date,
                "site_name": merged.final_site_name,
                "valid": record.is_valid,
                "inserted": inserted,
            },
        )
        return IngestOutcome(
            source=path,
            destination=destination,
            photo_path=photo_path,
            record=record,
            merged=merged,
            inserted=inserted,
        )


__all__ = ["IngestOutcome", "IngestionPipeline"]
