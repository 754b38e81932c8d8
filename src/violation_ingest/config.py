"""Configuration loader and typed settings for the ingestion service."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class DatabaseConfig:
    """Relational store holding the site registry and photo records."""

    url: str = "sqlite:///data/violations.db"


@dataclass
class StorageConfig:
    """Filesystem locations for intake and the processed archive."""

    watch_dir: str = "images"
    base_dir: str = "."
    processed_dir: str = "processed-images"
    extensions: list[str] = field(default_factory=lambda: [".jpg"])

    @property
    def archive_root(self) -> Path:
        """Return ``<base_dir>/<processed_dir>`` as an absolute path."""

        return (Path(self.base_dir).expanduser() / self.processed_dir).resolve()

    @property
    def extension_set(self) -> frozenset[str]:
        return frozenset(ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in self.extensions)


@dataclass
class HeaderOcrConfig:
    """Structured-text OCR over the printed header band."""

    language: str = "spa"
    crop_ratio: float = 0.15
    max_retries: int = 2
    retry_delay: float = 1.0
    greyscale: bool = True
    sharpen: bool = True
    normalize: bool = True
    tesseract_config: str = "--psm 6"
    tesseract_cmd: str | None = None


@dataclass
class PlateCropConfig:
    """Fractional margins that isolate the plate region before upload."""

    top_offset: float = 0.55
    bottom_margin: float = 0.05
    left_margin: float = 0.25
    right_margin: float = 0.25
    target_width: int = 640
    jpeg_quality: int = 80


@dataclass
class KeepAliveConfig:
    """Periodic ping that keeps the vision model resident on the server."""

    enabled: bool = True
    interval: float = 240.0
    value: str = "10m"


@dataclass
class PlateVisionConfig:
    """Vision-model inference for the plate region."""

    host: str = "http://localhost:11434"
    model: str = "minicpm-v"
    max_retries: int = 3
    retry_delay: float = 1.0
    request_timeout: float = 60.0
    num_ctx: int = 2048
    num_predict: int = 64
    temperature: float = 0.0
    top_p: float = 0.1
    response_format: str = "json"
    crop: PlateCropConfig = field(default_factory=PlateCropConfig)
    keep_alive: KeepAliveConfig = field(default_factory=KeepAliveConfig)

    @property
    def chat_endpoint(self) -> str:
        return f"{self.host.rstrip('/')}/api/chat"

    @property
    def generate_endpoint(self) -> str:
        return f"{self.host.rstrip('/')}/api/generate"


@dataclass
class QueueConfig:
    """In-process queue width plus the optional Celery backend."""

    max_concurrency: int = 1
    batch_size: int = 16
    broker_url: str = "redis://localhost:6379/0"
    result_backend: str = "redis://localhost:6379/1"
    queue_name: str = "ingest"


@dataclass
class Settings:
    """Top-level application settings."""

    databases: DatabaseConfig = field(default_factory=DatabaseConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    header_ocr: HeaderOcrConfig = field(default_factory=HeaderOcrConfig)
    plate_vision: PlateVisionConfig = field(default_factory=PlateVisionConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)


def _project_root() -> Path:
    """Best-effort detection of the repository root for config discovery."""

    module_path = Path(__file__).resolve()
    try:
        return module_path.parents[2]
    except IndexError:  # pragma: no cover - shallow install layouts
        return module_path.parent


def _default_settings_paths() -> list[Path]:
    """Return candidate settings paths ordered by preference."""

    candidates: list[Path] = []
    for candidate in (
        (Path.cwd() / "config" / "settings.yaml").resolve(),
        (_project_root() / "config" / "settings.yaml").resolve(),
    ):
        if candidate not in candidates:
            candidates.append(candidate)
    return candidates


def _resolve_settings_path(settings_path: Path | str | None) -> Path:
    """Determine which settings file to load, honoring overrides."""

    if settings_path:
        return Path(settings_path).expanduser().resolve()

    env_override = os.getenv("VIOLATION_INGEST_SETTINGS")
    if env_override:
        return Path(env_override).expanduser().resolve()

    candidates = _default_settings_paths()
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return candidates[0]


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    return {}


def _apply_section(target: Any, raw: dict[str, Any]) -> None:
    """Copy scalar values from ``raw`` onto a dataclass when the types line up.

    Unknown keys are ignored and mismatched types keep the default, so a
    partially wrong settings file still produces a usable configuration.
    """

    for key, value in raw.items():
        if not hasattr(target, key):
            continue
        current = getattr(target, key)
        if isinstance(current, bool):
            if isinstance(value, bool):
                setattr(target, key, value)
        elif isinstance(current, float):
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                setattr(target, key, float(value))
        elif isinstance(current, int):
            if isinstance(value, int) and not isinstance(value, bool):
                setattr(target, key, value)
        elif isinstance(current, list):
            if isinstance(value, list):
                setattr(target, key, [str(item) for item in value])
        elif current is None or isinstance(current, str):
            if isinstance(value, str):
                setattr(target, key, value)


def _apply_env_overrides(settings: Settings) -> None:
    """Apply deployment-level environment variables on top of the YAML file."""

    env = os.environ
    if env.get("DATABASE_URL"):
        settings.databases.url = env["DATABASE_URL"]
    if env.get("FILES_BASE_DIR"):
        settings.storage.base_dir = env["FILES_BASE_DIR"]
    if env.get("PROCESSED_FILES_DIR"):
        settings.storage.processed_dir = env["PROCESSED_FILES_DIR"]
    if env.get("WATCH_DIR"):
        settings.storage.watch_dir = env["WATCH_DIR"]
    if env.get("OLLAMA_HOST"):
        settings.plate_vision.host = env["OLLAMA_HOST"]


def load_settings(settings_path: Path | str | None = None) -> Settings:
    """Load application settings from a YAML file, falling back to defaults.

    A missing or malformed file yields a :class:`Settings` instance populated
    with default values. Environment overrides are applied last in every case.
    """

    path = _resolve_settings_path(settings_path)
    settings = Settings()

    raw: Any = {}
    if path.exists() and path.is_file():
        with path.open("r", encoding="utf-8") as fp:
            raw = yaml.safe_load(fp) or {}

    if isinstance(raw, dict):
        _apply_section(settings.databases, _as_dict(raw.get("databases")))
        _apply_section(settings.storage, _as_dict(raw.get("storage")))
        _apply_section(settings.header_ocr, _as_dict(raw.get("header_ocr")))
        _apply_section(settings.queue, _as_dict(raw.get("queue")))

        plate_raw = _as_dict(raw.get("plate_vision"))
        _apply_section(settings.plate_vision, plate_raw)
        _apply_section(settings.plate_vision.crop, _as_dict(plate_raw.get("crop")))
        _apply_section(settings.plate_vision.keep_alive, _as_dict(plate_raw.get("keep_alive")))

    _apply_env_overrides(settings)
    return settings


__all__ = [
    "DatabaseConfig",
    "StorageConfig",
    "HeaderOcrConfig",
    "PlateCropConfig",
    "KeepAliveConfig",
    "PlateVisionConfig",
    "QueueConfig",
    "Settings",
    "load_settings",
]
