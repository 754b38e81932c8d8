"""Scan the intake root and dispatch one Celery ingestion task per photo."""

from __future__ import annotations

from pathlib import Path

import typer

from utils.logging import get_logger
from violation_ingest.dev.options import load_cli_settings
from violation_ingest.scanner import FileInfo, scan_roots
from violation_ingest.task_queue import ingest_photo

LOGGER = get_logger(__name__, extra={"component": "enqueue_celery"})


def _enqueue_files(files: list[FileInfo]) -> int:
    total = len(files)
    progress_interval = max(1, total // 20) if total else 0

    for index, info in enumerate(files, start=1):
        ingest_photo.delay(str(info.path.resolve()))
        if progress_interval and (index % progress_interval == 0 or index == total):
            LOGGER.info(
                "celery_enqueue_progress",
                extra={"queued": index, "total": total, "percent": round(index * 100.0 / total, 1)},
            )
    return total


def main(
    roots: list[Path] = typer.Argument(None, help="Directories to scan. Defaults to storage.watch_dir."),
    settings_path: Path | None = typer.Option(None, "--settings", help="Alternate settings.yaml path."),
) -> None:
    """Enqueue ``ingest_photo`` for every photo found under the given roots."""

    settings = load_cli_settings(settings_path)
    scan_targets = roots or [Path(settings.storage.watch_dir).expanduser().resolve()]
    LOGGER.info(
        "celery_enqueue_start",
        extra={"roots": [str(root) for root in scan_targets], "queue": settings.queue.queue_name},
    )

    files = list(scan_roots(scan_targets, settings.storage.extension_set))
    if not files:
        LOGGER.warning("celery_enqueue_no_files", extra={"roots": [str(root) for root in scan_targets]})
        return

    queued = _enqueue_files(files)
    LOGGER.info("celery_enqueue_complete", extra={"queued": queued})


def cli() -> None:
    typer.run(main)


if __name__ == "__main__":
    cli()


__all__ = ["main", "cli"]
