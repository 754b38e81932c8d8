"""Header band OCR: crop, structured-text recognition and rule-table parsing."""

from __future__ import annotations

import re
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import pytesseract
from PIL import Image, ImageFilter, ImageOps

from utils.logging import get_logger
from violation_ingest.config import HeaderOcrConfig
from violation_ingest.errors import CriticalFieldsMissingError, ExtractionFailure
from violation_ingest.models import HeaderFields

LOGGER = get_logger(__name__, extra={"component": "header_ocr"})


@dataclass(frozen=True)
class FieldRule:
    """One candidate for a header field: a pattern plus how to read the match."""

    pattern: re.Pattern[str]
    extract: Callable[[re.Match[str]], str]

    def apply(self, text: str) -> str | None:
        match = self.pattern.search(text)
        if match is None or not match.group(1):
            return None
        value = self.extract(match)
        return value or None


def _group(match: re.Match[str]) -> str:
    return match.group(1).strip()


def _digits_only(match: re.Match[str]) -> str:
    raw = match.group(1).strip()
    number = re.search(r"(\d+)", raw)
    return number.group(1) if number else raw


def _rule(pattern: str, extract: Callable[[re.Match[str]], str] = _group, flags: int = re.IGNORECASE) -> FieldRule:
    return FieldRule(pattern=re.compile(pattern, flags), extract=extract)


# Ordered per field; the first rule that matches wins.
HEADER_RULES: Mapping[str, Sequence[FieldRule]] = {
    "date": (
        _rule(r"Fecha:\s*(\d{1,2}/\d{1,2}/\d{4})"),
        _rule(r"(\d{1,2}/\d{1,2}/\d{4})", flags=0),
    ),
    "time": (
        _rule(r"Hora:\s*(\d{1,2}:\d{2}:\d{2})"),
        _rule(r"(\d{1,2}:\d{2}:\d{2})", flags=0),
    ),
    "location": (
        _rule(r"Auto\s+Loc\d*:\s*([A-Z0-9_]+)"),
        _rule(r"Loc\d*:\s*([A-Z0-9_\-\s]+?)(?=\s+ID|$)"),
        _rule(r"Ubicaci[óo]n:\s*([^0-9\n]+?)(?=\s+[A-Z]|$)"),
    ),
    "speed_limit": (
        _rule(r"L[íi]mite\s+de\s+Velocidad:\s*(\d+\s*km/h)", _digits_only),
        _rule(r"L[íi]mite:\s*(\d+\s*km/h)", _digits_only),
        _rule(r"(\d+\s*km/h).*l[íi]mite", _digits_only),
    ),
    "measured_speed": (
        _rule(r"Velocidad:\s*[-~](\d+)\s*km/h\s*\(DEP\)"),
        _rule(r"[-~](\d+)\s*km/h\s*\(DEP\)"),
        _rule(r"Velocidad:\s*[-~]?(\d+)\s*km/h"),
        _rule(r"Velocidad:\s*[-~]?(\d+\s*km/h)"),
    ),
}


def match_field(rules: Sequence[FieldRule], text: str) -> str:
    """Return the value of the first matching rule, or ``""`` when none match."""

    for rule in rules:
        value = rule.apply(text)
        if value is not None:
            return value
    return ""


def parse_header_text(text: str, rules: Mapping[str, Sequence[FieldRule]] = HEADER_RULES) -> HeaderFields:
    """Parse recognized header text into :class:`HeaderFields`.

    Non-empty lines are joined with single spaces before matching so patterns
    can span the line breaks the OCR engine inserts.
    """

    full_text = " ".join(line.strip() for line in text.splitlines() if line.strip())
    fields = HeaderFields()
    for name, field_rules in rules.items():
        setattr(fields, name, match_field(field_rules, full_text))
    return fields


def crop_header(image_path: Path, config: HeaderOcrConfig) -> Image.Image:
    """Return the preprocessed top band of an image."""

    with Image.open(image_path) as img:
        width, height = img.size
        crop_height = max(1, int(height * config.crop_ratio))
        band = img.crop((0, 0, width, crop_height))
        band.load()

    if config.greyscale:
        band = ImageOps.grayscale(band)
    elif band.mode not in ("RGB", "L"):
        band = band.convert("RGB")
    if config.sharpen:
        band = band.filter(ImageFilter.SHARPEN)
    if config.normalize:
        band = ImageOps.autocontrast(band)
    return band


class TextRecognizer(Protocol):
    """A text-recognition engine with an explicit lifecycle."""

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def recognize(self, image: Image.Image) -> str: ...


class TesseractRecognizer:
    """Process-wide Tesseract engine with an explicit start/stop lifecycle.

    ``start`` resolves the binary and language once; ``recognize`` starts the
    engine lazily on first use. Tesseract itself runs one subprocess per call,
    so the lock only serializes the one-time initialization.
    """

    def __init__(self, config: HeaderOcrConfig) -> None:
        self._config = config
        self._lock = threading.Lock()
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> None:
        with self._lock:
            if self._started:
                return
            if self._config.tesseract_cmd:
                pytesseract.pytesseract.tesseract_cmd = self._config.tesseract_cmd
            version = pytesseract.get_tesseract_version()
            languages = pytesseract.get_languages(config="")
            if self._config.language not in languages:
                LOGGER.warning(
                    "tesseract_language_missing",
                    extra={"language": self._config.language, "available": languages},
                )
            self._started = True
            LOGGER.info("tesseract_started", extra={"version": str(version), "language": self._config.language})

    def stop(self) -> None:
        with self._lock:
            if not self._started:
                return
            self._started = False
            LOGGER.info("tesseract_stopped")

    def recognize(self, image: Image.Image) -> str:
        if not self._started:
            self.start()
        return pytesseract.image_to_string(
            image,
            lang=self._config.language,
            config=self._config.tesseract_config,
        )


class HeaderTextExtractor:
    """Run header OCR with a bounded number of attempts.

    On exhaustion the last error propagates; this extractor never returns a
    partial result.
    """

    def __init__(
        self,
        recognizer: TextRecognizer,
        config: HeaderOcrConfig,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._recognizer = recognizer
        self._config = config
        self._sleep = sleep

    def _attempt(self, image_path: Path) -> HeaderFields:
        band = crop_header(image_path, self._config)
        text = self._recognizer.recognize(band)
        LOGGER.debug("header_ocr_text", extra={"image": image_path.name, "text": text})

        fields = parse_header_text(text)
        missing = fields.missing_critical()
        if missing:
            raise CriticalFieldsMissingError(missing)
        return fields

    def extract(self, image_path: Path) -> HeaderFields:
        attempts = max(1, self._config.max_retries)
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                fields = self._attempt(image_path)
                LOGGER.info("header_ocr_success", extra={"image": image_path.name, "attempt": attempt})
                return fields
            except (ExtractionFailure, OSError, pytesseract.TesseractError) as exc:
                last_error = exc
                LOGGER.warning(
                    "header_ocr_attempt_failed",
                    extra={"image": image_path.name, "attempt": attempt, "max_attempts": attempts, "error": str(exc)},
                )
                if attempt < attempts:
                    self._sleep(self._config.retry_delay)

        LOGGER.error(
            "header_ocr_exhausted",
            extra={"image": image_path.name, "attempts": attempts, "error": str(last_error)},
        )
        if last_error is None:  # pragma: no cover - attempts is at least one
            raise ExtractionFailure("header OCR failed")
        raise last_error


__all__ = [
    "FieldRule",
    "HEADER_RULES",
    "match_field",
    "parse_header_text",
    "crop_header",
    "TextRecognizer",
    "TesseractRecognizer",
    "HeaderTextExtractor",
]
