from __future__ import annotations

import os
import tempfile
from collections.abc import Iterator, Sequence
from pathlib import Path

import pytest
from PIL import Image

os.environ.setdefault("VIOLATION_INGEST_LOG_DIR", str(Path(tempfile.gettempdir()) / "violation_ingest_test_logs"))

from violation_ingest.config import Settings  # noqa: E402
from violation_ingest.db import dispose_engines  # noqa: E402
from violation_ingest.models import HeaderFields, PlateResult  # noqa: E402

HEADER_TEXT = (
    "Fecha: 16/03/2024 Hora: 09:17:46\n"
    "Auto Loc1: SITE_X ID 42\n"
    "Limite de Velocidad: 60 km/h Velocidad: -87 km/h (DEP)\n"
)

_ENV_OVERRIDES = ("DATABASE_URL", "FILES_BASE_DIR", "PROCESSED_FILES_DIR", "WATCH_DIR", "OLLAMA_HOST")


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for key in _ENV_OVERRIDES:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("VIOLATION_INGEST_SETTINGS", raising=False)
    yield
    dispose_engines()


def write_jpeg(path: Path, size: tuple[int, int] = (400, 300), color: str = "white") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color=color).save(path, format="JPEG")
    return path


class FakeRecognizer:
    """Recognizer that replays canned text, one entry per call."""

    def __init__(self, texts: Sequence[str]) -> None:
        self.texts = list(texts)
        self.calls = 0
        self.started = 0
        self.stopped = 0

    def start(self) -> None:
        self.started += 1

    def stop(self) -> None:
        self.stopped += 1

    def recognize(self, image: Image.Image) -> str:
        index = min(self.calls, len(self.texts) - 1)
        self.calls += 1
        return self.texts[index]


class StaticHeader:
    def __init__(self, fields: HeaderFields | None = None, error: Exception | None = None) -> None:
        self.fields = fields
        self.error = error

    def extract(self, image_path: Path) -> HeaderFields:
        if self.error is not None:
            raise self.error
        assert self.fields is not None
        return self.fields


class StaticPlate:
    def __init__(self, result: PlateResult | None = None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error

    def extract(self, image_path: Path) -> PlateResult:
        if self.error is not None:
            raise self.error
        assert self.result is not None
        return self.result


class MemorySites:
    """In-memory stand-in for the site registry lookup."""

    def __init__(self, names: Sequence[str] = ()) -> None:
        self.ids = {name: index for index, name in enumerate(names, start=1)}
        self.lookups: list[str] = []

    def lookup(self, name: str) -> int | None:
        self.lookups.append(name)
        return self.ids.get(name)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    cfg = Settings()
    cfg.databases.url = f"sqlite:///{tmp_path / 'data' / 'violations.db'}"
    cfg.storage.watch_dir = str(tmp_path / "images")
    cfg.storage.base_dir = str(tmp_path)
    cfg.storage.processed_dir = "processed"
    cfg.header_ocr.retry_delay = 0.0
    cfg.plate_vision.retry_delay = 0.0
    cfg.plate_vision.keep_alive.enabled = False
    return cfg
