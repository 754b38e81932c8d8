"""SQLAlchemy schema for the site registry and photo records, plus session management."""

from __future__ import annotations

from pathlib import Path
from threading import Lock
from typing import Any

from sqlalchemy import (
    JSON,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    create_engine,
    event,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class Site(Base):
    """Registry of camera sites (cruises); names are matched exactly."""

    __tablename__ = "site"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False, unique=True)


class Photo(Base):
    """One ingested photograph and its OCR payload."""

    __tablename__ = "photo"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    photo_date: Mapped[str] = mapped_column(String(10), nullable=False)
    id_site: Mapped[int] = mapped_column(Integer, ForeignKey("site.id"), nullable=False)
    photo_name: Mapped[str] = mapped_column(String, nullable=False)
    photo_path: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    photo_info: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (
        Index("idx_photo_site_date", "id_site", "photo_date"),
    )


_ENGINES: dict[str, Engine] = {}
_ENGINES_LOCK = Lock()


def normalize_database_url(target: str) -> str:
    """Turn a bare path or relative SQLite URL into an absolute SQLite URL.

    Other URLs are returned unchanged.
    """

    raw = target.strip()
    if "://" not in raw:
        return f"sqlite:///{Path(raw).resolve()}"

    url = make_url(raw)
    if url.get_backend_name() != "sqlite" or url.database in (None, "", ":memory:"):
        return raw
    return f"{url.drivername}:///{Path(url.database).resolve()}"


def _sqlite_pragmas(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout = 30000")
        cursor.execute("PRAGMA foreign_keys = ON")
    finally:
        cursor.close()


def get_engine(target: str) -> Engine:
    """Return the cached engine for ``target``, creating the schema on first use."""

    url = normalize_database_url(target)
    with _ENGINES_LOCK:
        engine = _ENGINES.get(url)
        if engine is not None:
            return engine

        sa_url = make_url(url)
        if sa_url.get_backend_name() == "sqlite":
            database = sa_url.database
            if database and database != ":memory:":
                Path(database).parent.mkdir(parents=True, exist_ok=True)
            engine = create_engine(url)
            event.listen(engine, "connect", _sqlite_pragmas)
        else:
            engine = create_engine(url, pool_pre_ping=True)

        Base.metadata.create_all(engine)
        _ENGINES[url] = engine
        return engine


def open_session(target: str) -> Session:
    return Session(get_engine(target))


def dispose_engines() -> None:
    """Dispose every cached engine; used on shutdown and between tests."""

    with _ENGINES_LOCK:
        for engine in _ENGINES.values():
            engine.dispose()
        _ENGINES.clear()


def dialect_insert(session: Session, table: Any) -> Any:
    """INSERT supporting ``on_conflict_do_nothing`` on SQLite and PostgreSQL."""

    if session.get_bind().dialect.name == "sqlite":
        return sqlite_insert(table)
    return pg_insert(table)


__all__ = [
    "Base",
    "Site",
    "Photo",
    "normalize_database_url",
    "get_engine",
    "open_session",
    "dispose_engines",
    "dialect_insert",
]
