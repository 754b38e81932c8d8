"""One-shot ingestion of every photo currently under the intake root."""

from __future__ import annotations

import json
from pathlib import Path

import typer

from utils.logging import get_logger
from violation_ingest.dev.options import load_cli_settings
from violation_ingest.ingest_queue import IngestionQueue
from violation_ingest.services import IngestServices
from violation_ingest.stats import IngestStats
from violation_ingest.watcher import backfill

LOGGER = get_logger(__name__, extra={"component": "ingest"})


def main(
    root: Path | None = typer.Option(
        None,
        "--root",
        file_okay=False,
        dir_okay=True,
        help="Intake root to ingest. Defaults to storage.watch_dir in settings.yaml.",
    ),
    db: str | None = typer.Option(None, "--db", help="Database URL or path. Defaults to databases.url."),
    concurrency: int | None = typer.Option(None, "--concurrency", help="Maximum number of photos in flight."),
    settings_path: Path | None = typer.Option(None, "--settings", help="Alternate settings.yaml path."),
) -> None:
    """Process the photos already waiting, print a summary and exit."""

    settings = load_cli_settings(settings_path, db=db, watch_dir=root, concurrency=concurrency)
    intake_root = Path(settings.storage.watch_dir).expanduser().resolve()

    with IngestServices(settings) as services:
        stats = IngestStats()
        pipeline = services.build_pipeline(watch_root=intake_root, stats=stats)
        ingest_queue = IngestionQueue(
            pipeline.process_file,
            stats=stats,
            max_concurrency=settings.queue.max_concurrency,
            batch_size=settings.queue.batch_size,
        )
        queued = backfill(intake_root, ingest_queue, settings.storage.extension_set)
        if not queued:
            LOGGER.warning("ingest_no_files", extra={"root": str(intake_root)})
            return

        ingest_queue.start()
        ingest_queue.join()
        ingest_queue.stop()

    summary = ingest_queue.stats.summary()
    typer.echo(json.dumps(summary, indent=2))
    if ingest_queue.stats.failed_files:
        typer.echo("Failed files:")
        for failed in ingest_queue.stats.failed_files:
            typer.echo(f"  {failed}")


def cli() -> None:
    typer.run(main)


if __name__ == "__main__":
    cli()


__all__ = ["main", "cli"]
