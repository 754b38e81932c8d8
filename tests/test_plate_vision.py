"""Tests for plate grammar, response parsing and the vision extractor."""

from __future__ import annotations

import base64
import io
import json
import time
from pathlib import Path

import httpx
import pytest
from PIL import Image

from conftest import write_jpeg
from violation_ingest.config import PlateCropConfig, PlateVisionConfig
from violation_ingest.errors import ExtractionFailure
from violation_ingest.plate_vision import (
    PLATE_OCR_SYSTEM_PROMPT,
    InferenceClient,
    KeepAliveService,
    PlateVisionExtractor,
    classify_plate,
    crop_plate_region,
    extract_json_block,
)


@pytest.mark.parametrize(
    ("plate", "expected"),
    [
        ("P123ABC", "particular"),
        ("p-123 abc", "particular"),
        ("M 456 DEF", "moto"),
        ("C789GHI", "comercial"),
        ("A001ZZZ", "unknown"),
        ("o-000-xyz", "unknown"),
    ],
)
def test_classify_plate_accepts_grammars(plate: str, expected: str) -> None:
    assert classify_plate(plate) == expected


@pytest.mark.parametrize("plate", ["", "P12ABC", "P1234ABC", "123ABCD", "PP123ABC", "P123AB1", "P123ÁBC"])
def test_classify_plate_rejects_everything_else(plate: str) -> None:
    assert classify_plate(plate) is None


def test_extract_json_block_plain_json() -> None:
    assert extract_json_block('{"vehicle": {"plate": "P123ABC"}}') == {"vehicle": {"plate": "P123ABC"}}


def test_extract_json_block_with_surrounding_prose() -> None:
    text = 'Sure! Here is the plate:\n```json\n{"vehicle": {"plate": "M456DEF"}}\n```\nAnything else? {x}'

    assert extract_json_block(text) == {"vehicle": {"plate": "M456DEF"}}


def test_extract_json_block_skips_unbalanced_brace() -> None:
    assert extract_json_block('{oops {"vehicle": {"plate": "C1"}}') == {"vehicle": {"plate": "C1"}}


def test_extract_json_block_without_object_fails() -> None:
    with pytest.raises(ExtractionFailure):
        extract_json_block("no plate visible")


def test_crop_plate_region_resizes_and_greyscales(tmp_path: Path) -> None:
    image = write_jpeg(tmp_path / "photo.jpg", size=(2000, 1000), color="red")

    data = crop_plate_region(image, PlateCropConfig(target_width=300))

    with Image.open(io.BytesIO(data)) as crop:
        assert crop.format == "JPEG"
        assert crop.mode == "L"
        assert crop.width == 300


def test_crop_plate_region_never_enlarges(tmp_path: Path) -> None:
    image = write_jpeg(tmp_path / "photo.jpg", size=(200, 100))

    data = crop_plate_region(image, PlateCropConfig(target_width=640))

    with Image.open(io.BytesIO(data)) as crop:
        assert crop.width == 100


class _OllamaStub:
    """Callable transport handler that replays one chat reply per request."""

    def __init__(self, replies: list[httpx.Response]) -> None:
        self.replies = replies
        self.chat_bodies: list[dict] = []
        self.generate_bodies: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if request.url.path == "/api/generate":
            self.generate_bodies.append(body)
            return httpx.Response(200, json={"response": "pong", "done": True})
        self.chat_bodies.append(body)
        index = min(len(self.chat_bodies) - 1, len(self.replies) - 1)
        reply = self.replies[index]
        return httpx.Response(reply.status_code, content=reply.content, headers=reply.headers)


def _chat_reply(content: str) -> httpx.Response:
    return httpx.Response(200, json={"message": {"role": "assistant", "content": content}, "done": True})


def _extractor(stub: _OllamaStub, config: PlateVisionConfig, sleeps: list[float]) -> PlateVisionExtractor:
    client = InferenceClient(config, transport=httpx.MockTransport(stub))
    return PlateVisionExtractor(client, config, sleep=sleeps.append)


def test_plate_extractor_success_sends_expected_request(tmp_path: Path) -> None:
    image = write_jpeg(tmp_path / "photo.jpg")
    config = PlateVisionConfig(host="http://ollama.test:11434", retry_delay=0.0)
    stub = _OllamaStub([_chat_reply('{"vehicle": {"plate": "p-123 abc"}}')])

    result = _extractor(stub, config, []).extract(image)

    assert (result.plate_text, result.plate_type, result.valid, result.error) == ("P123ABC", "particular", True, None)
    body = stub.chat_bodies[0]
    assert body["model"] == "minicpm-v"
    assert body["stream"] is False
    assert body["keep_alive"] == "10m"
    assert body["options"]["top_p"] == 0.1
    assert body["options"]["num_predict"] == config.num_predict
    assert body["messages"][0] == {"role": "system", "content": PLATE_OCR_SYSTEM_PROMPT}
    image_b64 = body["messages"][1]["images"][0]
    assert base64.b64decode(image_b64)[:2] == b"\xff\xd8"


def test_plate_extractor_retries_then_succeeds(tmp_path: Path) -> None:
    image = write_jpeg(tmp_path / "photo.jpg")
    config = PlateVisionConfig(max_retries=3, retry_delay=1.0)
    stub = _OllamaStub(
        [
            httpx.Response(500, text="model loading"),
            _chat_reply('{"vehicle": {"plate": ""}}'),
            _chat_reply('{"vehicle": {"plate": "M456DEF"}}'),
        ]
    )
    sleeps: list[float] = []

    result = _extractor(stub, config, sleeps).extract(image)

    assert result.plate_text == "M456DEF"
    assert result.plate_type == "moto"
    assert len(stub.chat_bodies) == 3
    assert sleeps == [1.0, 1.0]


def test_plate_extractor_returns_terminal_value_when_exhausted(tmp_path: Path) -> None:
    image = write_jpeg(tmp_path / "photo.jpg")
    config = PlateVisionConfig(max_retries=2, retry_delay=0.0)
    stub = _OllamaStub([_chat_reply('{"vehicle": {"plate": "12345"}}')])

    result = _extractor(stub, config, []).extract(image)

    assert result.plate_text == ""
    assert result.valid is False
    assert result.error is not None
    assert result.error.startswith("failed after 2 attempts")
    assert "attempt 1: invalid plate format" in result.error
    assert "attempt 2: invalid plate format" in result.error


def test_plate_extractor_handles_transport_errors(tmp_path: Path) -> None:
    image = write_jpeg(tmp_path / "photo.jpg")
    config = PlateVisionConfig(max_retries=2, retry_delay=0.0)

    def _refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = InferenceClient(config, transport=httpx.MockTransport(_refuse))
    result = PlateVisionExtractor(client, config, sleep=lambda _: None).extract(image)

    assert result.valid is False
    assert "inference request failed" in (result.error or "")


def test_plate_extractor_retries_non_object_message(tmp_path: Path) -> None:
    image = write_jpeg(tmp_path / "photo.jpg")
    config = PlateVisionConfig(max_retries=3, retry_delay=0.5)
    stub = _OllamaStub(
        [
            httpx.Response(200, json={"message": "model is loading"}),
            httpx.Response(200, json=["not", "an", "object"]),
            _chat_reply('{"vehicle": {"plate": "C789GHI"}}'),
        ]
    )
    sleeps: list[float] = []

    result = _extractor(stub, config, sleeps).extract(image)

    assert (result.plate_text, result.plate_type) == ("C789GHI", "comercial")
    assert sleeps == [0.5, 0.5]


def test_plate_extractor_unreadable_image_yields_terminal_value(tmp_path: Path) -> None:
    image = tmp_path / "broken.jpg"
    image.write_bytes(b"not a jpeg")
    config = PlateVisionConfig(max_retries=2, retry_delay=0.0)
    stub = _OllamaStub([_chat_reply('{"vehicle": {"plate": "P123ABC"}}')])

    result = _extractor(stub, config, []).extract(image)

    assert result.valid is False
    assert (result.error or "").startswith("failed after 2 attempts")
    assert stub.chat_bodies == []


def test_plate_extractor_unexpected_error_is_retried(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    image = write_jpeg(tmp_path / "photo.jpg")
    config = PlateVisionConfig(max_retries=2, retry_delay=0.0)
    stub = _OllamaStub([_chat_reply('{"vehicle": {"plate": "P123ABC"}}')])
    calls: list[Path] = []

    def _bomb(path: Path, crop: PlateCropConfig) -> bytes:
        calls.append(path)
        raise ValueError("decompression bomb")

    monkeypatch.setattr("violation_ingest.plate_vision.crop_plate_region", _bomb)

    result = _extractor(stub, config, []).extract(image)

    assert len(calls) == 2
    assert result.valid is False
    assert "decompression bomb" in (result.error or "")


def test_keep_alive_ping_failures_are_swallowed() -> None:
    config = PlateVisionConfig()
    config.keep_alive.interval = 0.01
    pings: list[dict] = []

    def _flaky(request: httpx.Request) -> httpx.Response:
        pings.append(json.loads(request.content))
        return httpx.Response(503)

    client = InferenceClient(config, transport=httpx.MockTransport(_flaky))
    keep_alive = KeepAliveService(client, config)
    keep_alive.start()
    keep_alive.start()
    try:
        for _ in range(200):
            if len(pings) >= 2:
                break
            time.sleep(0.01)
    finally:
        keep_alive.stop()
        keep_alive.stop()
        client.stop()

    assert len(pings) >= 2
    assert pings[0] == {
        "model": "minicpm-v",
        "prompt": "ping",
        "keep_alive": "10m",
        "stream": False,
        "options": {"num_predict": 1},
    }
    assert keep_alive.running is False


def test_keep_alive_disabled_does_not_start() -> None:
    config = PlateVisionConfig()
    config.keep_alive.enabled = False
    keep_alive = KeepAliveService(InferenceClient(config), config)

    keep_alive.start()

    assert keep_alive.running is False
