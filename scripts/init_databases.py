"""Initialize the violations database schema and the archive root."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Ensure src/ is on sys.path so we can import shared logging and DB helpers.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.append(str(SRC_ROOT))

from utils.logging import get_logger  # noqa: E402
from violation_ingest.config import load_settings  # noqa: E402
from violation_ingest.db import normalize_database_url, open_session  # noqa: E402

LOGGER = get_logger(__name__)


def _init_db(target: str) -> None:
    session = open_session(target)
    session.close()
    LOGGER.info("init_db_ok", extra={"target": normalize_database_url(target)})


def _init_archive_root(archive_root: Path) -> None:
    archive_root.mkdir(parents=True, exist_ok=True)
    LOGGER.info("init_archive_root_ok", extra={"root": str(archive_root)})


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Initialize the violations database schema and archive root.")
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="Database URL or path. Defaults to databases.url in settings.yaml.",
    )
    parser.add_argument(
        "--archive-root",
        dest="archive_root",
        type=Path,
        default=None,
        help="Processed archive directory. Defaults to storage.base_dir/storage.processed_dir.",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = load_settings()
    target = args.db or settings.databases.url
    archive_root = args.archive_root or settings.storage.archive_root
    _init_db(target)
    _init_archive_root(archive_root)


if __name__ == "__main__":
    main()
