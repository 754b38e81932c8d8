"""Dry-run OCR: run both engines on images without moving or storing anything."""

from __future__ import annotations

import json
from pathlib import Path

import typer

from utils.logging import get_logger
from violation_ingest.dev.options import load_cli_settings
from violation_ingest.fusion import OCRFusion
from violation_ingest.scanner import has_extension, scan_roots
from violation_ingest.services import IngestServices
from violation_ingest.stats import IngestStats

LOGGER = get_logger(__name__, extra={"component": "try_ocr"})


def collect_images(target: Path, extensions: frozenset[str]) -> list[Path]:
    if target.is_file():
        return [target] if has_extension(target, extensions) else []
    return [info.path for info in scan_roots([target], extensions)]


def run_dry(fusion: OCRFusion, images: list[Path], stats: IngestStats) -> list[dict]:
    payloads: list[dict] = []
    for image in images:
        record = fusion.process(image)
        stats.record_ocr(record)
        payloads.append(record.to_payload())
    return payloads


def main(
    target: Path = typer.Argument(..., exists=True, readable=True, help="Image file or folder of images."),
    settings_path: Path | None = typer.Option(None, "--settings", help="Alternate settings.yaml path."),
) -> None:
    """Print the OCR payload for each image and an overall summary."""

    settings = load_cli_settings(settings_path)
    images = collect_images(target, settings.storage.extension_set)
    if not images:
        typer.echo(f"No images found under {target}")
        raise typer.Exit(code=1)

    stats = IngestStats()
    with IngestServices(settings) as services:
        payloads = run_dry(services.build_fusion(), images, stats)

    for payload in payloads:
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))

    summary = stats.summary()
    typer.echo(
        f"Processed: {summary['processed']} | "
        f"Header OK: {summary['header_success']} ({summary['header_rate']}%) | "
        f"Plate OK: {summary['plate_success']} ({summary['plate_rate']}%)"
    )
    typer.echo(f"Average header: {summary['avg_header_ms']}ms | Average plate: {summary['avg_plate_ms']}ms")


def cli() -> None:
    typer.run(main)


if __name__ == "__main__":
    cli()


__all__ = ["collect_images", "run_dry", "main", "cli"]
