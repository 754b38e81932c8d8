"""Settings overrides shared by the command-line entrypoints."""

from __future__ import annotations

from pathlib import Path

from violation_ingest.config import Settings, load_settings


def load_cli_settings(
    settings_path: Path | None = None,
    db: str | None = None,
    watch_dir: Path | None = None,
    concurrency: int | None = None,
) -> Settings:
    """Load settings and apply CLI flags on top of YAML and environment values."""

    settings = load_settings(settings_path)
    if db:
        settings.databases.url = db
    if watch_dir is not None:
        settings.storage.watch_dir = str(watch_dir)
    if concurrency is not None and concurrency > 0:
        settings.queue.max_concurrency = concurrency
    return settings


__all__ = ["load_cli_settings"]
