import csv
from datetime import datetime

import pytest

from duplicate_finder.models import (DuplicateFilter, DuplicateGroup, DuplicateItem, GeoLocation, MediaKind,
                                     ScanResult, SimilarityType)
from duplicate_finder.reporting import HEADERS, ReportGenerator


@pytest.fixture
def result(make_asset):
    keep = make_asset("IMG_0001.jpg", device_make="Apple", device_model="iPhone 12",
                      location=GeoLocation(48.8584, 2.2945))
    copy = make_asset("IMG_0001 copy.jpg", width=540, height=960, byte_size=120_000,
                      creation_date=datetime(2024, 3, 1), device_model="Pixel 7")
    v1 = make_asset("clip.mov", kind=MediaKind.VIDEO, width=1920, height=1080, duration=75.0)
    v2 = make_asset("clip-1.mov", kind=MediaKind.VIDEO, width=1920, height=1080, duration=75.0)
    groups = (
        DuplicateGroup.create([DuplicateItem.from_asset(keep), DuplicateItem.from_asset(copy)],
                              SimilarityType.SIMILAR, 0.72),
        DuplicateGroup.create([DuplicateItem.from_asset(v1), DuplicateItem.from_asset(v2)],
                              SimilarityType.EXACT, 1.0),
    )
    return ScanResult(scan_date=datetime(2024, 4, 1), groups=groups,
                      last_asset_date=datetime(2024, 3, 1), total_assets_scanned=10)


def read_rows(path):
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.reader(f))


def test_report_writes_one_row_per_item(result, tmp_path):
    out = tmp_path / "report.csv"
    assert ReportGenerator(result).generate_group_report(out) == 2

    rows = read_rows(out)
    assert rows[0] == HEADERS
    assert len(rows) == 5

    photo_keep, photo_dup, video_keep, video_dup = rows[1:]
    assert photo_keep[HEADERS.index("Role")] == "Keep"
    assert photo_dup[HEADERS.index("Role")] == "Duplicate"
    assert photo_keep[HEADERS.index("Confidence")] == "0.72"
    assert photo_keep[HEADERS.index("Device")] == "Apple iPhone 12"
    assert photo_keep[HEADERS.index("Location")] == "48.858400, 2.294500"
    assert video_keep[HEADERS.index("Duration")] == "1:15"
    assert video_keep[HEADERS.index("Similarity")] == "exact"


def test_notes_only_on_first_row(result, tmp_path):
    out = tmp_path / "report.csv"
    ReportGenerator(result).generate_group_report(out)
    rows = read_rows(out)
    notes = HEADERS.index("Notes")

    assert "Differs in:" in rows[1][notes]
    for prop in ("Devices", "Locations", "Dimensions", "Sizes", "Dates"):
        assert prop in rows[1][notes]
    assert "Spans multiple dates" in rows[1][notes]
    assert rows[2][notes] == ""
    assert rows[3][notes] == ""


def test_filter_and_representative_rows(result, tmp_path):
    out = tmp_path / "videos.csv"
    count = ReportGenerator(result).generate_group_report(
        out, DuplicateFilter(media_kind=MediaKind.VIDEO, min_confidence=0.0), representative_only=True)

    rows = read_rows(out)
    assert count == 1
    assert len(rows) == 2
    assert rows[1][HEADERS.index("Asset")] == "clip.mov"
