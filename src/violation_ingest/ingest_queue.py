"""In-process intake queue feeding the per-file pipeline under a concurrency cap."""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from utils.logging import get_logger
from violation_ingest.errors import IngestError
from violation_ingest.pipeline import IngestOutcome
from violation_ingest.stats import IngestStats

LOGGER = get_logger(__name__, extra={"component": "ingest_queue"})

_STOP = object()


class IngestionQueue:
    """Accept file paths in arrival order and process them in batches.

    A consumer thread drains up to ``batch_size`` queued paths at a time and
    runs them on a pool of ``max_concurrency`` workers. A failing file is
    logged and counted; it never stops its siblings or the consumer.
    """

    def __init__(
        self,
        process: Callable[[Path], IngestOutcome],
        max_concurrency: int = 1,
        batch_size: int = 16,
        stats: IngestStats | None = None,
    ) -> None:
        self._process = process
        self.max_concurrency = max(1, max_concurrency)
        self.batch_size = max(1, batch_size)
        self.stats = stats or IngestStats()

        self._tasks: queue.Queue[object] = queue.Queue()
        self._pending: set[str] = set()
        self._pending_lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None
        self._consumer: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._consumer is not None and self._consumer.is_alive()

    def submit(self, path: Path) -> bool:
        """Queue ``path`` unless it is already waiting or in flight."""

        key = str(Path(path))
        with self._pending_lock:
            if key in self._pending:
                LOGGER.debug("ingest_duplicate_skipped", extra={"file_path": key})
                return False
            self._pending.add(key)
        self._tasks.put(Path(path))
        LOGGER.debug("ingest_file_queued", extra={"file_path": key, "queue_size": self._tasks.qsize()})
        return True

    def start(self) -> None:
        if self._consumer is not None:
            return
        self._executor = ThreadPoolExecutor(max_workers=self.max_concurrency, thread_name_prefix="ingest-worker")
        self._consumer = threading.Thread(target=self._consume, name="ingest-queue", daemon=True)
        self._consumer.start()
        LOGGER.info(
            "ingest_queue_started",
            extra={"max_concurrency": self.max_concurrency, "batch_size": self.batch_size},
        )

    def join(self) -> None:
        """Block until every submitted path has been processed."""

        self._tasks.join()

    def stop(self) -> None:
        """Finish queued work, stop the consumer and log the run summary."""

        consumer = self._consumer
        if consumer is None:
            return
        self._tasks.put(_STOP)
        consumer.join()
        self._consumer = None
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        LOGGER.info("ingest_queue_stopped", extra=self.stats.summary())

    def _consume(self) -> None:
        stopping = False
        while not stopping:
            item = self._tasks.get()
            if item is _STOP:
                self._tasks.task_done()
                break

            batch: list[Path] = [item]  # type: ignore[list-item]
            while len(batch) < self.batch_size:
                try:
                    extra_item = self._tasks.get_nowait()
                except queue.Empty:
                    break
                if extra_item is _STOP:
                    self._tasks.task_done()
                    stopping = True
                    break
                batch.append(extra_item)  # type: ignore[arg-type]

            try:
                self.process_batch(batch)
            finally:
                for _ in batch:
                    self._tasks.task_done()

    def process_batch(self, paths: Sequence[Path]) -> list[IngestOutcome | None]:
        """Process ``paths`` under the concurrency cap; failures come back as ``None``."""

        LOGGER.info("ingest_batch_started", extra={"batch_size": len(paths)})
        if self._executor is not None:
            results = list(self._executor.map(self._run_one, paths))
        else:
            with ThreadPoolExecutor(max_workers=self.max_concurrency, thread_name_prefix="ingest-worker") as pool:
                results = list(pool.map(self._run_one, paths))

        failures = sum(1 for result in results if result is None)
        LOGGER.info("ingest_batch_complete", extra={"batch_size": len(paths), "failed": failures})
        return results

    def _run_one(self, path: Path) -> IngestOutcome | None:
        try:
            outcome = self._process(path)
        except IngestError as exc:
            self.stats.record_failure(path)
            LOGGER.error(
                "ingest_file_failed",
                extra={"file_path": str(path), "error_type": type(exc).__name__, "error": str(exc)},
            )
            return None
        except Exception as exc:  # noqa: BLE001
            self.stats.record_failure(path)
            LOGGER.error(
                "ingest_file_unexpected_error",
                extra={"file_path": str(path), "error_type": type(exc).__name__, "error": str(exc)},
            )
            return None
        finally:
            with self._pending_lock:
                self._pending.discard(str(Path(path)))

        self.stats.record_completed()
        return outcome


__all__ = ["IngestionQueue"]
