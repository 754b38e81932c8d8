"""Filesystem scanner for photos already waiting under the intake root."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

from utils.logging import get_logger

LOGGER = get_logger(__name__)

DEFAULT_EXTENSIONS: frozenset[str] = frozenset({".jpg"})


@dataclass(frozen=True)
class FileInfo:
    """Lightweight file metadata for scanning results."""

    path: Path
    mtime: float


def has_extension(path: Path, extensions: frozenset[str] | None = None) -> bool:
    return path.suffix.lower() in (extensions or DEFAULT_EXTENSIONS)


def scan_roots(roots: Sequence[Path], extensions: frozenset[str] | None = None) -> Iterator[FileInfo]:
    """Recursively scan intake roots and yield photo descriptors.

    Args:
        roots: Intake directories to scan.
        extensions: Allowed file extensions, lowercased and including the leading dot.
            When omitted, :data:`DEFAULT_EXTENSIONS` is used.

    Yields:
        FileInfo instances ordered by modification time within each root, oldest first.
    """

    allowed = extensions or DEFAULT_EXTENSIONS

    for root in roots:
        if not root.exists() or not root.is_dir():
            LOGGER.warning("scan_root_missing", extra={"root": str(root)})
            continue

        found: list[FileInfo] = []
        for path in root.rglob("*"):
            if not path.is_file() or not has_extension(path, allowed):
                continue
            found.append(FileInfo(path=path, mtime=path.stat().st_mtime))

        found.sort(key=lambda info: (info.mtime, str(info.path)))
        yield from found


__all__ = ["FileInfo", "DEFAULT_EXTENSIONS", "has_extension", "scan_roots"]
