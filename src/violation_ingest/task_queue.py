"""Celery wiring for deployments that prefer a broker-backed ingestion queue."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

from celery import Celery

from utils.logging import get_logger
from violation_ingest.config import Settings, load_settings
from violation_ingest.errors import IngestError
from violation_ingest.pipeline import IngestionPipeline
from violation_ingest.services import IngestServices

LOGGER = get_logger(__name__, extra={"component": "task_queue"})


@lru_cache(maxsize=1)
def _load_settings() -> Settings:
    return load_settings()


def _init_celery() -> Celery:
    settings = _load_settings()
    app = Celery("violation_ingest")
    app.conf.update(
        broker_url=settings.queue.broker_url,
        result_backend=settings.queue.result_backend,
        worker_concurrency=settings.queue.max_concurrency,
        worker_prefetch_multiplier=1,
        task_acks_late=True,
        task_default_queue=settings.queue.queue_name,
        task_routes={
            "violation_ingest.task_queue.ingest_photo": {"queue": settings.queue.queue_name},
        },
    )
    return app


celery_app = _init_celery()


@lru_cache(maxsize=1)
def _worker_pipeline() -> IngestionPipeline:
    """Start the services once per worker process and build its pipeline."""

    services = IngestServices(_load_settings()).start()
    return services.build_pipeline()


@celery_app.task(name="violation_ingest.task_queue.ingest_photo", acks_late=True)
def ingest_photo(path: str) -> dict[str, Any]:
    """Run the per-file pipeline for one photo path."""

    try:
        outcome = _worker_pipeline().process_file(Path(path))
    except IngestError as exc:
        LOGGER.error(
            "task_ingest_failed",
            extra={"file_path": path, "error_type": type(exc).__name__, "error": str(exc)},
        )
        return {"path": path, "ok": False, "error": str(exc)}

    return {
        "path": path,
        "ok": True,
        "photo_path": outcome.photo_path,
        "photo_date": outcome.merged.final_date,
        "site_name": outcome.merged.final_site_name,
        "valid": outcome.record.is_valid,
        "inserted": outcome.inserted,
    }


__all__ = ["celery_app", "ingest_photo"]
