"""Directory watch boundary: turn filesystem events into queue submissions."""

from __future__ import annotations

from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from utils.logging import get_logger
from violation_ingest.ingest_queue import IngestionQueue
from violation_ingest.scanner import has_extension, scan_roots

LOGGER = get_logger(__name__, extra={"component": "watcher"})


class PhotoEventHandler(FileSystemEventHandler):
    """Submit newly created or moved-in photos to the ingestion queue."""

    def __init__(self, ingest_queue: IngestionQueue, extensions: frozenset[str]) -> None:
        super().__init__()
        self._queue = ingest_queue
        self._extensions = extensions

    def _offer(self, raw_path: str | bytes) -> None:
        path = Path(raw_path.decode() if isinstance(raw_path, bytes) else raw_path)
        if not has_extension(path, self._extensions):
            LOGGER.debug("watch_event_ignored", extra={"file_path": str(path)})
            return
        self._queue.submit(path)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._offer(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._offer(event.dest_path)


def backfill(root: Path, ingest_queue: IngestionQueue, extensions: frozenset[str]) -> int:
    """Queue photos already present under ``root``; returns how many were queued."""

    queued = 0
    for info in scan_roots([root], extensions):
        if ingest_queue.submit(info.path):
            queued += 1
    LOGGER.info("watch_backfill_complete", extra={"root": str(root), "queued": queued})
    return queued


class DirectoryWatcher:
    """Recursive watchdog observer over the intake root."""

    def __init__(self, root: Path, ingest_queue: IngestionQueue, extensions: frozenset[str]) -> None:
        self.root = Path(root)
        self._queue = ingest_queue
        self._extensions = extensions
        self._observer: Observer | None = None

    def start(self, run_backfill: bool = True) -> None:
        if self._observer is not None:
            return
        self.root.mkdir(parents=True, exist_ok=True)
        observer = Observer()
        observer.schedule(PhotoEventHandler(self._queue, self._extensions), str(self.root), recursive=True)
        observer.start()
        self._observer = observer
        LOGGER.info("watch_started", extra={"root": str(self.root), "extensions": sorted(self._extensions)})
        if run_backfill:
            backfill(self.root, self._queue, self._extensions)

    def stop(self) -> None:
        observer = self._observer
        if observer is None:
            return
        observer.stop()
        observer.join()
        self._observer = None
        LOGGER.info("watch_stopped", extra={"root": str(self.root)})


__all__ = ["PhotoEventHandler", "backfill", "DirectoryWatcher"]
