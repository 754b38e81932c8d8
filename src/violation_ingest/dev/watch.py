"""Long-running watcher: backfill the intake root, then ingest new photos as they land."""

from __future__ import annotations

import time
from pathlib import Path

import typer

from utils.logging import get_logger
from violation_ingest.dev.options import load_cli_settings
from violation_ingest.ingest_queue import IngestionQueue
from violation_ingest.services import IngestServices
from violation_ingest.stats import IngestStats
from violation_ingest.watcher import DirectoryWatcher

LOGGER = get_logger(__name__, extra={"component": "watch"})


def main(
    watch_dir: Path | None = typer.Option(
        None,
        "--watch-dir",
        file_okay=False,
        dir_okay=True,
        help="Intake root to watch. Defaults to storage.watch_dir in settings.yaml.",
    ),
    db: str | None = typer.Option(
        None,
        "--db",
        help="Database URL or path. Defaults to databases.url in settings.yaml.",
    ),
    concurrency: int | None = typer.Option(
        None,
        "--concurrency",
        help="Maximum number of photos in flight. Defaults to queue.max_concurrency.",
    ),
    backfill: bool = typer.Option(
        True,
        "--backfill/--no-backfill",
        help="Queue photos already present under the intake root at startup.",
    ),
    settings_path: Path | None = typer.Option(None, "--settings", help="Alternate settings.yaml path."),
) -> None:
    """Watch the intake root and ingest every photo that appears under it."""

    settings = load_cli_settings(settings_path, db=db, watch_dir=watch_dir, concurrency=concurrency)
    root = Path(settings.storage.watch_dir).expanduser().resolve()

    services = IngestServices(settings).start()
    stats = IngestStats()
    pipeline = services.build_pipeline(watch_root=root, stats=stats)
    ingest_queue = IngestionQueue(
        pipeline.process_file,
        stats=stats,
        max_concurrency=settings.queue.max_concurrency,
        batch_size=settings.queue.batch_size,
    )
    watcher = DirectoryWatcher(root, ingest_queue, settings.storage.extension_set)

    ingest_queue.start()
    watcher.start(run_backfill=backfill)
    LOGGER.info(
        "watch_ready",
        extra={"root": str(root), "archive_root": str(settings.storage.archive_root), "db": settings.databases.url},
    )

    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        LOGGER.info("watch_interrupted")
    finally:
        watcher.stop()
        ingest_queue.stop()
        services.stop()


def cli() -> None:
    typer.run(main)


if __name__ == "__main__":
    cli()


__all__ = ["main", "cli"]
