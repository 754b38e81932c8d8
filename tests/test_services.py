"""Tests for service lifecycle and the watch boundary."""

from __future__ import annotations

from pathlib import Path

import httpx
from watchdog.events import DirCreatedEvent, FileCreatedEvent, FileMovedEvent

from conftest import FakeRecognizer
from violation_ingest.config import Settings
from violation_ingest.ingest_queue import IngestionQueue
from violation_ingest.services import IngestServices
from violation_ingest.watcher import PhotoEventHandler


def _unused_transport() -> httpx.MockTransport:
    return httpx.MockTransport(lambda request: httpx.Response(500))


def test_services_start_and_stop_are_idempotent(settings: Settings, monkeypatch) -> None:
    registered = []
    monkeypatch.setattr("violation_ingest.services.atexit.register", registered.append)
    recognizer = FakeRecognizer(["x"])
    services = IngestServices(settings, recognizer=recognizer, transport=_unused_transport())

    services.start()
    services.start()
    services.stop()
    services.stop()

    assert recognizer.started == 1
    assert recognizer.stopped == 1
    assert registered == [services.stop]
    assert services.started is False


def test_services_context_manager_starts_keep_alive(settings: Settings, monkeypatch) -> None:
    monkeypatch.setattr("violation_ingest.services.atexit.register", lambda _fn: None)
    settings.plate_vision.keep_alive.enabled = True
    settings.plate_vision.keep_alive.interval = 60.0

    with IngestServices(settings, recognizer=FakeRecognizer(["x"]), transport=_unused_transport()) as services:
        assert services.keep_alive.running is True

    assert services.keep_alive.running is False


def test_event_handler_filters_extensions() -> None:
    submitted: list[Path] = []

    class _Recorder(IngestionQueue):
        def submit(self, path: Path) -> bool:
            submitted.append(Path(path))
            return True

    handler = PhotoEventHandler(_Recorder(lambda path: None), frozenset({".jpg"}))  # type: ignore[arg-type, return-value]

    handler.on_created(FileCreatedEvent("/in/15082024/SiteX/a.JPG"))
    handler.on_created(FileCreatedEvent("/in/15082024/SiteX/a.png"))
    handler.on_created(DirCreatedEvent("/in/15082024/NewSite"))
    handler.on_moved(FileMovedEvent("/tmp/upload.part", "/in/15082024/SiteX/b.jpg"))

    assert submitted == [Path("/in/15082024/SiteX/a.JPG"), Path("/in/15082024/SiteX/b.jpg")]
