"""Plate region OCR through a vision-capable chat inference service.

The extractor always returns a :class:`PlateResult`: after the last failed
attempt it hands back an empty, invalid plate annotated with the aggregated
error text instead of raising.
"""

from __future__ import annotations

import base64
import io
import json
import re
import threading
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import httpx
from PIL import Image, ImageOps

from utils.logging import get_logger
from violation_ingest.config import PlateCropConfig, PlateVisionConfig
from violation_ingest.errors import ExtractionFailure, ValidationFailure
from violation_ingest.models import PlateResult, PlateType

LOGGER = get_logger(__name__, extra={"component": "plate_vision"})

PLATE_OCR_SYSTEM_PROMPT = """
You are a technical OCR system for automated traffic enforcement processing.
This is a legitimate law enforcement application for speed violation detection.
Extract ONLY the alphanumeric characters visible on the vehicle license plate.

Technical requirements:
- Identify rectangular plate area with alphanumeric characters
- Extract character sequence (letters and numbers)
- Return data as structured JSON format
- Process all visible text on the license plate area

Output format (JSON only):
{
  "vehicle": {
    "plate": "CHARACTERS_FOUND"
  }
}

Return only the JSON object. No explanations.
""".strip()

PLATE_OCR_USER_PROMPT = "Extrae la placa en formato JSON."

# Checked in order; the catch-all "unknown" grammar must stay last.
PLATE_GRAMMARS: Mapping[str, re.Pattern[str]] = {
    "particular": re.compile(r"^P\d{3}[A-Z]{3}$"),
    "moto": re.compile(r"^M\d{3}[A-Z]{3}$"),
    "comercial": re.compile(r"^C\d{3}[A-Z]{3}$"),
    "unknown": re.compile(r"^[A-Z]\d{3}[A-Z]{3}$"),
}

_PLATE_SEPARATORS = re.compile(r"[-\s]")


def normalize_plate(plate: str) -> str:
    """Upper-case a plate and drop hyphens and whitespace."""

    return _PLATE_SEPARATORS.sub("", plate.upper())


def classify_plate(plate: str) -> PlateType | None:
    """Return the plate class for a matching grammar, or ``None``."""

    clean = normalize_plate(plate)
    for plate_type, pattern in PLATE_GRAMMARS.items():
        if pattern.match(clean):
            return plate_type  # type: ignore[return-value]
    return None


def extract_json_block(text: str) -> dict[str, Any]:
    """Parse a model reply as JSON, tolerating prose around the object.

    The whole text is tried first; failing that, the first ``{`` that starts a
    decodable top-level object wins.
    """

    stripped = text.strip()
    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError:
        parsed = None
    if isinstance(parsed, dict):
        return parsed

    decoder = json.JSONDecoder()
    start = stripped.find("{")
    while start != -1:
        try:
            candidate, _ = decoder.raw_decode(stripped, start)
        except json.JSONDecodeError:
            start = stripped.find("{", start + 1)
            continue
        if isinstance(candidate, dict):
            return candidate
        start = stripped.find("{", start + 1)

    raise ExtractionFailure(f"no JSON object in model response: {stripped[:120]!r}")


def crop_plate_region(image_path: Path, crop: PlateCropConfig) -> bytes:
    """Crop, downsample, greyscale and JPEG-compress the plate region."""

    with Image.open(image_path) as img:
        width, height = img.size
        if not width or not height:
            raise ExtractionFailure(f"cannot read image dimensions for {image_path.name}")

        top = max(0, int(height * crop.top_offset))
        bottom = int(height * (1 - crop.bottom_margin))
        left = max(0, int(width * crop.left_margin))
        right = int(width * (1 - crop.right_margin))
        box = (left, top, max(left + 1, right), max(top + 1, bottom))

        region = ImageOps.grayscale(img.crop(box))

    if region.width > crop.target_width:
        ratio = crop.target_width / float(region.width)
        new_size = (crop.target_width, max(1, int(region.height * ratio)))
        region = region.resize(new_size, resample=Image.Resampling.LANCZOS)

    buffer = io.BytesIO()
    region.save(buffer, format="JPEG", quality=crop.jpeg_quality, optimize=True)
    LOGGER.debug(
        "plate_crop_ready",
        extra={"image": image_path.name, "crop_box": box, "size": region.size, "bytes": buffer.tell()},
    )
    return buffer.getvalue()


class InferenceClient:
    """HTTP transport to the chat and generate endpoints of the vision service."""

    def __init__(self, config: PlateVisionConfig, transport: httpx.BaseTransport | None = None) -> None:
        self._config = config
        self._transport = transport
        self._client: httpx.Client | None = None
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self._client is not None:
                return
            self._client = httpx.Client(timeout=self._config.request_timeout, transport=self._transport)
            LOGGER.info("inference_client_started", extra={"host": self._config.host, "model": self._config.model})

    def stop(self) -> None:
        with self._lock:
            if self._client is None:
                return
            self._client.close()
            self._client = None
            LOGGER.info("inference_client_stopped")

    def _http(self) -> httpx.Client:
        if self._client is None:
            self.start()
        assert self._client is not None
        return self._client

    def chat_with_image(self, image_b64: str) -> str:
        """Submit one image with the fixed prompts and return ``message.content``."""

        cfg = self._config
        body = {
            "model": cfg.model,
            "keep_alive": cfg.keep_alive.value,
            "stream": False,
            "format": cfg.response_format,
            "options": {
                "num_ctx": cfg.num_ctx,
                "num_predict": cfg.num_predict,
                "temperature": cfg.temperature,
                "top_p": cfg.top_p,
            },
            "messages": [
                {"role": "system", "content": PLATE_OCR_SYSTEM_PROMPT},
                {"role": "user", "content": PLATE_OCR_USER_PROMPT, "images": [image_b64]},
            ],
        }

        try:
            response = self._http().post(cfg.chat_endpoint, json=body)
        except httpx.HTTPError as exc:
            raise ExtractionFailure(f"inference request failed: {exc}") from exc

        if response.status_code >= 400:
            raise ExtractionFailure(f"inference service returned {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
        except ValueError as exc:
            raise ExtractionFailure("inference service returned a non-JSON body") from exc

        message = data.get("message") if isinstance(data, dict) else None
        if not isinstance(message, dict):
            raise ExtractionFailure(f"inference response has no message object: {str(data)[:200]}")
        content = message.get("content")
        if not content:
            raise ExtractionFailure("inference response has no message content")
        return str(content)

    def ping(self) -> None:
        """Send a one-token generate request so the model stays loaded."""

        cfg = self._config
        response = self._http().post(
            cfg.generate_endpoint,
            json={
                "model": cfg.model,
                "prompt": "ping",
                "keep_alive": cfg.keep_alive.value,
                "stream": False,
                "options": {"num_predict": 1},
            },
        )
        response.raise_for_status()


class KeepAliveService:
    """Background timer that pings the inference service at a fixed interval.

    Ping failures are logged and swallowed; callers never see them.
    """

    def __init__(self, client: InferenceClient, config: PlateVisionConfig) -> None:
        self._client = client
        self._config = config
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if not self._config.keep_alive.enabled:
            return
        with self._lock:
            if self._thread is not None:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run, name="plate-keep-alive", daemon=True)
            self._thread.start()
            LOGGER.info("plate_keep_alive_started", extra={"interval": self._config.keep_alive.interval})

    def stop(self) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
        if thread is None:
            return
        self._stop_event.set()
        thread.join(timeout=5.0)
        LOGGER.info("plate_keep_alive_stopped")

    def _run(self) -> None:
        while not self._stop_event.wait(self._config.keep_alive.interval):
            try:
                self._client.ping()
                LOGGER.debug("plate_keep_alive_ok")
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("plate_keep_alive_failed", extra={"error": str(exc)})


class PlateVisionExtractor:
    """Crop the plate, ask the vision model for it and validate the answer.

    :meth:`extract` never raises: every attempt failure is retried and the
    last resort is an empty :class:`PlateResult` carrying the errors.
    """

    def __init__(
        self,
        client: InferenceClient,
        config: PlateVisionConfig,
        keep_alive: KeepAliveService | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._config = config
        self._keep_alive = keep_alive
        self._sleep = sleep

    def _attempt(self, image_path: Path) -> PlateResult:
        crop_bytes = crop_plate_region(image_path, self._config.crop)
        content = self._client.chat_with_image(base64.b64encode(crop_bytes).decode("ascii"))
        LOGGER.debug("plate_ocr_raw_response", extra={"image": image_path.name, "content": content})

        parsed = extract_json_block(content)
        vehicle = parsed.get("vehicle")
        raw_plate = vehicle.get("plate") if isinstance(vehicle, dict) else None
        if not isinstance(raw_plate, str) or not raw_plate.strip():
            raise ExtractionFailure("plate not found in model response")

        plate = normalize_plate(raw_plate.strip())
        plate_type = classify_plate(plate)
        if plate_type is None:
            raise ValidationFailure(f"invalid plate format {raw_plate.strip()!r}, expected X123ABC")

        return PlateResult(plate_text=plate, plate_type=plate_type, valid=True)

    def extract(self, image_path: Path) -> PlateResult:
        if self._keep_alive is not None:
            self._keep_alive.start()

        attempts = max(1, self._config.max_retries)
        errors: list[str] = []

        for attempt in range(1, attempts + 1):
            try:
                result = self._attempt(image_path)
                LOGGER.info(
                    "plate_ocr_success",
                    extra={"image": image_path.name, "attempt": attempt, "plate_type": result.plate_type},
                )
                return result
            except Exception as exc:  # noqa: BLE001
                errors.append(f"attempt {attempt}: {exc}")
                LOGGER.warning(
                    "plate_ocr_attempt_failed",
                    extra={"image": image_path.name, "attempt": attempt, "max_attempts": attempts, "error": str(exc)},
                )
                if attempt < attempts:
                    self._sleep(self._config.retry_delay)

        message = f"failed after {attempts} attempts: " + "; ".join(errors)
        LOGGER.error("plate_ocr_exhausted", extra={"image": image_path.name, "error": message})
        return PlateResult.exhausted(message)


__all__ = [
    "PLATE_OCR_SYSTEM_PROMPT",
    "PLATE_OCR_USER_PROMPT",
    "PLATE_GRAMMARS",
    "normalize_plate",
    "classify_plate",
    "extract_json_block",
    "crop_plate_region",
    "InferenceClient",
    "KeepAliveService",
    "PlateVisionExtractor",
]
