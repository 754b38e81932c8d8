"""Site registry access and photo record insertion."""

from __future__ import annotations

import time
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from utils.logging import get_logger
from violation_ingest.db import Photo, Site, dialect_insert, open_session
from violation_ingest.errors import PersistenceError
from violation_ingest.models import MergedRecord

LOGGER = get_logger(__name__, extra={"component": "persistence"})


def ensure_site(session: Session, name: str) -> int:
    """Return the id for ``name``, registering it when absent.

    ``INSERT ... ON CONFLICT (name) DO NOTHING`` followed by a select keeps
    concurrent first sightings of the same name from creating two rows.
    """

    stmt = dialect_insert(session, Site).values(name=name).on_conflict_do_nothing(index_elements=["name"])
    result = session.execute(stmt)
    if result.rowcount:
        LOGGER.info("site_registered", extra={"site_name": name})
    site_id = session.execute(select(Site.id).where(Site.name == name)).scalar_one()
    return int(site_id)


class SiteRepository:
    """Exact-match lookups against the site registry, one session per call."""

    def __init__(self, database_url: str | Path) -> None:
        self._database_url = database_url

    def lookup(self, name: str) -> int | None:
        try:
            with open_session(self._database_url) as session:
                found = session.execute(select(Site.id).where(Site.name == name)).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"site lookup failed for {name!r}: {exc}") from exc
        return int(found) if found is not None else None


class PersistenceWriter:
    """Register the site and insert the photo row in one transaction.

    Photo rows are keyed by ``photo_path``; writing the same path twice keeps
    the first row and reports ``False``.
    """

    def __init__(self, database_url: str | Path) -> None:
        self._database_url = database_url

    def write(self, merged: MergedRecord, storage_path: str) -> bool:
        try:
            with open_session(self._database_url) as session:
                site_id = ensure_site(session, merged.final_site_name)
                stmt = (
                    dialect_insert(session, Photo)
                    .values(
                        photo_date=merged.final_date,
                        id_site=site_id,
                        photo_name=merged.photo_name,
                        photo_path=storage_path,
                        photo_info=merged.persisted_payload,
                        created_at=time.time(),
                    )
                    .on_conflict_do_nothing(index_elements=["photo_path"])
                )
                inserted = bool(session.execute(stmt).rowcount)
                session.commit()
        except SQLAlchemyError as exc:
            LOGGER.error(
                "persistence_failed",
                extra={"image": merged.photo_name, "photo_path": storage_path, "error": str(exc)},
            )
            raise PersistenceError(f"failed to persist {merged.photo_name}: {exc}") from exc

        if inserted:
            LOGGER.info(
                "photo_persisted",
                extra={
                    "image": merged.photo_name,
                    "photo_date": merged.final_date,
                    "site_name": merged.final_site_name,
                    "photo_path": storage_path,
                },
            )
        else:
            LOGGER.info("photo_already_persisted", extra={"image": merged.photo_name, "photo_path": storage_path})
        return inserted


__all__ = ["ensure_site", "SiteRepository", "PersistenceWriter"]
