"""Owned long-lived services and the pipeline built on top of them."""

from __future__ import annotations

import atexit
import threading
from pathlib import Path

import httpx

from utils.logging import get_logger
from violation_ingest.config import Settings
from violation_ingest.db import dispose_engines
from violation_ingest.fusion import OCRFusion
from violation_ingest.header_ocr import HeaderTextExtractor, TesseractRecognizer, TextRecognizer
from violation_ingest.merge import FallbackMergeResolver
from violation_ingest.persistence import PersistenceWriter, SiteRepository
from violation_ingest.pipeline import IngestionPipeline
from violation_ingest.plate_vision import InferenceClient, KeepAliveService, PlateVisionExtractor
from violation_ingest.relocation import FileRelocator
from violation_ingest.stats import IngestStats

LOGGER = get_logger(__name__, extra={"component": "services"})


class IngestServices:
    """Own the OCR engine, the inference client and the keep-alive timer.

    ``start`` brings all three up once and registers ``stop`` with
    :mod:`atexit`; ``stop`` is safe to call any number of times. Tests pass a
    fake recognizer and an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        settings: Settings,
        recognizer: TextRecognizer | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.recognizer: TextRecognizer = recognizer or TesseractRecognizer(settings.header_ocr)
        self.inference = InferenceClient(settings.plate_vision, transport=transport)
        self.keep_alive = KeepAliveService(self.inference, settings.plate_vision)
        self._lock = threading.Lock()
        self._started = False
        self._atexit_registered = False

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> "IngestServices":
        with self._lock:
            if self._started:
                return self
            self.recognizer.start()
            self.inference.start()
            self.keep_alive.start()
            if not self._atexit_registered:
                atexit.register(self.stop)
                self._atexit_registered = True
            self._started = True
        LOGGER.info("services_started", extra={"model": self.settings.plate_vision.model})
        return self

    def stop(self) -> None:
        with self._lock:
            if not self._started:
                return
            self.keep_alive.stop()
            self.inference.stop()
            self.recognizer.stop()
            dispose_engines()
            self._started = False
        LOGGER.info("services_stopped")

    def __enter__(self) -> "IngestServices":
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def build_fusion(self) -> OCRFusion:
        header = HeaderTextExtractor(self.recognizer, self.settings.header_ocr)
        plate = PlateVisionExtractor(self.inference, self.settings.plate_vision, keep_alive=self.keep_alive)
        return OCRFusion(header, plate)

    def build_pipeline(self, watch_root: Path | None = None, stats: IngestStats | None = None) -> IngestionPipeline:
        database_url = self.settings.databases.url
        storage = self.settings.storage
        root = watch_root if watch_root is not None else Path(storage.watch_dir).expanduser().resolve()
        return IngestionPipeline(
            fusion=self.build_fusion(),
            resolver=FallbackMergeResolver(SiteRepository(database_url)),
            relocator=FileRelocator(storage.archive_root),
            writer=PersistenceWriter(database_url),
            watch_root=root,
            stats=stats,
        )


__all__ = ["IngestServices"]
