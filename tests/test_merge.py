"""Tests for date/site precedence and site registry reconciliation."""

from __future__ import annotations

import pytest

from conftest import MemorySites
from violation_ingest.merge import FallbackMergeResolver, convert_header_date
from violation_ingest.models import FusedOCRRecord, HeaderFields, PathMetadata, PlateResult

PATH_META = PathMetadata(capture_date="2024-08-15", site_id="SiteX", photo_name="16-03-2024-09-17-46-0.jpg")


def _record(date: str = "", location: str = "", time: str = "09:17:46") -> FusedOCRRecord:
    return FusedOCRRecord(
        file_name="16-03-2024-09-17-46-0.jpg",
        header=HeaderFields(date=date, time=time, location=location),
        plate=PlateResult(plate_text="P123ABC", plate_type="particular", valid=True),
        header_success=bool(date and time),
        plate_success=True,
    )


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("16/03/2024", "2024-03-16"),
        ("1/2/2024", "2024-02-01"),
        (" 31/12/1999 ", "1999-12-31"),
    ],
)
def test_convert_header_date(value: str, expected: str) -> None:
    assert convert_header_date(value) == expected


@pytest.mark.parametrize("value", ["", "2024-03-16", "16/03/24", "16-03-2024", "aa/bb/cccc", "16/03/2024 extra"])
def test_convert_header_date_rejects_other_shapes(value: str) -> None:
    assert convert_header_date(value) is None


@pytest.mark.parametrize("value", ["16/03/2024", "01/01/2000", "9/7/2031"])
def test_convert_header_date_round_trip_keeps_digits(value: str) -> None:
    year, month, day = convert_header_date(value).split("-")  # type: ignore[union-attr]
    source_day, source_month, source_year = value.split("/")

    assert (int(day), int(month), year) == (int(source_day), int(source_month), source_year)


def test_header_date_wins_when_parseable() -> None:
    merged = FallbackMergeResolver(MemorySites()).merge(PATH_META, _record(date="16/03/2024"))

    assert merged.final_date == "2024-03-16"


@pytest.mark.parametrize("header_date", ["", "16-03-2024", "garbage"])
def test_path_date_used_when_header_date_absent_or_unparseable(header_date: str) -> None:
    merged = FallbackMergeResolver(MemorySites()).merge(PATH_META, _record(date=header_date))

    assert merged.final_date == "2024-08-15"


def test_header_location_wins_and_is_registered_name() -> None:
    sites = MemorySites(["Avenida_Central"])

    merged = FallbackMergeResolver(sites).merge(PATH_META, _record(location="  Avenida_Central "))

    assert merged.final_site_name == "Avenida_Central"
    assert merged.persisted_payload["location"] == "  Avenida_Central "
    assert sites.lookups == ["Avenida_Central"]


def test_path_site_used_when_no_location() -> None:
    merged = FallbackMergeResolver(MemorySites()).merge(PATH_META, _record(location="   "))

    assert merged.final_site_name == "SiteX"


def test_registry_falls_back_to_path_site_id() -> None:
    sites = MemorySites(["SiteX"])

    merged = FallbackMergeResolver(sites).merge(PATH_META, _record(location="SITE_X_OCR"))

    assert merged.final_site_name == "SiteX"
    assert merged.persisted_payload["location"] == "SiteX"
    assert sites.lookups == ["SITE_X_OCR", "SiteX"]


def test_unregistered_name_kept_for_creation() -> None:
    sites = MemorySites()

    merged = FallbackMergeResolver(sites).merge(PATH_META, _record(location="NewSite"))

    assert merged.final_site_name == "NewSite"
    assert merged.persisted_payload["location"] == "NewSite"
    assert sites.lookups == ["NewSite", "SiteX"]


def test_no_second_lookup_when_names_match() -> None:
    sites = MemorySites()

    FallbackMergeResolver(sites).merge(PATH_META, _record())

    assert sites.lookups == ["SiteX"]


def test_site_matching_is_case_sensitive() -> None:
    sites = MemorySites(["sitex"])

    merged = FallbackMergeResolver(sites).merge(PATH_META, _record())

    assert merged.final_site_name == "SiteX"


def test_photo_name_always_from_path() -> None:
    record = _record(date="16/03/2024")
    record.file_name = "something-else.jpg"

    merged = FallbackMergeResolver(MemorySites()).merge(PATH_META, record)

    assert merged.photo_name == PATH_META.photo_name
    assert "timings_ms" not in merged.persisted_payload


@pytest.mark.parametrize("location", ["../../escaped", "Av/Reforma", "..", "Sitio\\Norte"])
def test_location_unusable_as_directory_falls_back_to_path_site(location: str) -> None:
    sites = MemorySites()

    merged = FallbackMergeResolver(sites).merge(PATH_META, _record(location=location))

    assert merged.final_site_name == "SiteX"
    assert merged.persisted_payload["location"] == "SiteX"
    assert sites.lookups == ["SiteX"]
