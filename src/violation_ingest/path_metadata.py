"""Derive capture date, site and photo name from the intake directory layout.

Files arrive as ``<root>/<date-or-site>/<site-or-date>/<photo>.jpg`` where
exactly one of the two middle segments is an eight digit DDMMYYYY string.
"""

from __future__ import annotations

from pathlib import Path, PurePath

from violation_ingest.errors import MalformedPathError
from violation_ingest.models import PathMetadata

DATE_SEGMENT_LENGTH = 8


def process_date(segment: str) -> str:
    """Reassemble a DDMMYYYY segment as ``YYYY-MM-DD``.

    No calendar check is applied: ``31042024`` becomes ``2024-04-31``.
    """

    if len(segment) != DATE_SEGMENT_LENGTH or not segment.isdigit() or not segment.isascii():
        raise MalformedPathError(f"invalid date segment {segment!r}: expected DDMMYYYY")

    day, month, year = segment[0:2], segment[2:4], segment[4:8]
    return f"{year}-{month}-{day}"


def _is_date_segment(segment: str) -> bool:
    return len(segment) == DATE_SEGMENT_LENGTH and segment.isascii() and segment.isdigit()


def _layout_parts(path: PurePath, root: PurePath | None) -> tuple[str, ...]:
    if root is not None:
        try:
            relative = path.relative_to(root)
        except ValueError:
            relative = None
        if relative is not None and len(relative.parts) >= 3:
            return relative.parts[-3:]

    parts = path.parts
    if len(parts) < 3:
        raise MalformedPathError(f"path {str(path)!r} is too shallow: expected <date>/<site>/<photo>")
    return parts[-3:]


def resolve_path_metadata(path: str | PurePath, root: str | PurePath | None = None) -> PathMetadata:
    """Parse a file path into :class:`PathMetadata`.

    Args:
        path: Absolute or relative path to the photo.
        root: Optional watched root. When given and ``path`` lies under it, the
            segments are read relative to the root; otherwise the last three
            segments of ``path`` are used.

    Raises:
        MalformedPathError: neither or both middle segments are eight ASCII
            digits.
    """

    pure = PurePath(path)
    root_path = PurePath(root) if root is not None else None
    first, second, photo_name = _layout_parts(pure, root_path)

    first_is_date, second_is_date = _is_date_segment(first), _is_date_segment(second)
    if first_is_date == second_is_date:
        found = "both" if first_is_date else "neither"
        raise MalformedPathError(
            f"path {str(pure)!r}: expected exactly one DDMMYYYY segment, {found} of {first!r} and {second!r} match"
        )
    date_segment, site_id = (first, second) if first_is_date else (second, first)

    return PathMetadata(
        capture_date=process_date(date_segment),
        site_id=site_id,
        photo_name=photo_name,
    )


def resolve_path_metadata_from_file(path: Path, root: Path | None = None) -> PathMetadata:
    """Resolve metadata for an on-disk file, normalizing both paths first."""

    resolved_root = root.resolve() if root is not None else None
    return resolve_path_metadata(path.resolve(), resolved_root)


__all__ = ["DATE_SEGMENT_LENGTH", "process_date", "resolve_path_metadata", "resolve_path_metadata_from_file"]
