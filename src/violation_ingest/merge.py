"""Reconcile fused OCR output with path metadata and the site registry."""

from __future__ import annotations

import re
from typing import Protocol

from utils.logging import get_logger
from violation_ingest.models import FusedOCRRecord, MergedRecord, PathMetadata
from violation_ingest.relocation import is_safe_site_name

LOGGER = get_logger(__name__, extra={"component": "merge"})

_HEADER_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


class SiteLookup(Protocol):
    """Read side of the site registry: exact-name match to an id."""

    def lookup(self, name: str) -> int | None: ...


def convert_header_date(value: str) -> str | None:
    """Convert ``DD/MM/YYYY`` into zero-padded ``YYYY-MM-DD``.

    Returns ``None`` when the value is not three numeric groups in that shape.
    """

    match = _HEADER_DATE.match(value.strip())
    if match is None:
        return None
    day, month, year = match.groups()
    return f"{year}-{int(month):02d}-{int(day):02d}"


def resolve_date(path_meta: PathMetadata, record: FusedOCRRecord) -> str:
    if record.header.date:
        converted = convert_header_date(record.header.date)
        if converted is not None:
            return converted
        LOGGER.warning(
            "header_date_unparseable",
            extra={"image": path_meta.photo_name, "header_date": record.header.date},
        )
    return path_meta.capture_date


def resolve_site_name(path_meta: PathMetadata, record: FusedOCRRecord) -> str:
    location = record.header.location.strip()
    if location and not is_safe_site_name(location):
        LOGGER.warning(
            "header_location_unusable",
            extra={"image": path_meta.photo_name, "location": location, "site_name": path_meta.site_id},
        )
        return path_meta.site_id
    return location or path_meta.site_id


class FallbackMergeResolver:
    """Apply extraction-over-path precedence and match the site registry.

    The registry is consulted with the resolved name first and, when that
    misses and the path-derived site id differs, with the site id. A miss on
    both keeps the resolved name, which the writer will register.
    """

    def __init__(self, sites: SiteLookup) -> None:
        self._sites = sites

    def reconcile_site(self, resolved_name: str, path_site_id: str) -> str:
        if self._sites.lookup(resolved_name) is not None:
            return resolved_name

        if resolved_name != path_site_id and self._sites.lookup(path_site_id) is not None:
            LOGGER.info(
                "site_fallback_match",
                extra={"resolved_name": resolved_name, "site_name": path_site_id},
            )
            return path_site_id

        LOGGER.info("site_not_registered", extra={"site_name": resolved_name})
        return resolved_name

    def merge(self, path_meta: PathMetadata, record: FusedOCRRecord) -> MergedRecord:
        final_date = resolve_date(path_meta, record)
        resolved_name = resolve_site_name(path_meta, record)
        final_site_name = self.reconcile_site(resolved_name, path_meta.site_id)

        payload = record.to_payload()
        location = record.header.location.strip()
        if final_site_name != resolved_name or (location and location != resolved_name):
            payload["location"] = final_site_name

        LOGGER.debug(
            "merge_resolved",
            extra={
                "image": path_meta.photo_name,
                "final_date": final_date,
                "site_name": final_site_name,
                "date_source": "header" if final_date != path_meta.capture_date else "path",
            },
        )
        return MergedRecord(
            final_date=final_date,
            final_site_name=final_site_name,
            photo_name=path_meta.photo_name,
            persisted_payload=payload,
        )


__all__ = ["SiteLookup", "convert_header_date", "resolve_date", "resolve_site_name", "FallbackMergeResolver"]
