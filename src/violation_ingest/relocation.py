"""Move processed photos into the per-site archive tree."""

from __future__ import annotations

import errno
import filecmp
import os
import shutil
from pathlib import Path

from utils.logging import get_logger
from violation_ingest.errors import RelocationError

LOGGER = get_logger(__name__, extra={"component": "relocation"})

_SEPARATORS = tuple(sep for sep in ("/", "\\", os.sep, os.altsep, "\x00") if sep)


def is_safe_site_name(name: str) -> bool:
    """Return ``True`` when ``name`` can be used as a single archive directory."""

    stripped = name.strip()
    if not stripped or stripped in (".", ".."):
        return False
    return not any(sep in name for sep in _SEPARATORS)


class FileRelocator:
    """Relocate files to ``<archive_root>/<site>/<photo_name>``.

    A missing source counts as already relocated and yields the would-be
    destination, so re-processing after a crash is harmless. An existing
    archive file is never overwritten: identical content means the same photo
    arrived twice, anything else is stored as ``<stem>-<n><suffix>``.
    """

    def __init__(self, archive_root: Path) -> None:
        self.archive_root = Path(archive_root)

    def destination(self, source: Path, site_name: str) -> Path:
        if not is_safe_site_name(site_name):
            raise RelocationError(f"site name {site_name!r} is not a valid archive directory name")

        target = self.archive_root / site_name / Path(source).name
        root = self.archive_root.resolve()
        if root not in target.resolve().parents:
            raise RelocationError(f"destination {target} escapes archive root {root}")
        return target

    def relocate(self, source: Path, site_name: str) -> Path:
        source = Path(source)
        target = self.destination(source, site_name)

        if not source.exists():
            LOGGER.info(
                "relocation_source_missing",
                extra={"file_path": str(source), "destination": str(target)},
            )
            return target

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise RelocationError(f"cannot create archive directory {target.parent}: {exc}") from exc

        if target.exists():
            if self._same_content(source, target):
                LOGGER.info("relocation_duplicate", extra={"file_path": str(source), "destination": str(target)})
                self._discard(source)
                return target
            taken = target
            target = self._free_name(target)
            LOGGER.warning(
                "relocation_name_taken",
                extra={"file_path": str(source), "taken": str(taken), "destination": str(target)},
            )

        try:
            os.rename(source, target)
        except OSError as exc:
            if exc.errno != errno.EXDEV:
                raise RelocationError(f"failed to move {source} to {target}: {exc}") from exc
            self._copy_then_delete(source, target)

        LOGGER.info("file_relocated", extra={"file_path": str(source), "destination": str(target)})
        return target

    @staticmethod
    def _same_content(source: Path, target: Path) -> bool:
        try:
            return filecmp.cmp(source, target, shallow=False)
        except OSError as exc:
            raise RelocationError(f"cannot compare {source} with {target}: {exc}") from exc

    @staticmethod
    def _free_name(target: Path) -> Path:
        index = 1
        candidate = target.with_name(f"{target.stem}-{index}{target.suffix}")
        while candidate.exists():
            index += 1
            candidate = target.with_name(f"{target.stem}-{index}{target.suffix}")
        return candidate

    @staticmethod
    def _discard(source: Path) -> None:
        try:
            source.unlink()
        except OSError as exc:
            raise RelocationError(f"cannot remove duplicate {source}: {exc}") from exc

    def _copy_then_delete(self, source: Path, target: Path) -> None:
        LOGGER.info("relocation_cross_device", extra={"file_path": str(source), "destination": str(target)})
        try:
            shutil.copy2(source, target)
            source.unlink()
        except OSError as exc:
            raise RelocationError(f"cross-device move of {source} to {target} failed: {exc}") from exc

    def to_relative_path(self, path: Path) -> str:
        """Return ``path`` relative to the archive root."""

        resolved = Path(path).resolve()
        try:
            return resolved.relative_to(self.archive_root.resolve()).as_posix()
        except ValueError as exc:
            raise RelocationError(f"{resolved} is outside archive root {self.archive_root}") from exc


__all__ = ["FileRelocator", "is_safe_site_name"]
