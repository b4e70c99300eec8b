import json
import subprocess
from datetime import datetime
from fractions import Fraction

import pytest
from PIL import Image

from duplicate_finder.catalog import metadata as metadata_module
from duplicate_finder.catalog.metadata import MetadataExtractor
from duplicate_finder.models import GeoLocation


# Mock MediaInfo class structure
class MockTrack:
    def __init__(self, track_type="General", **kwargs):
        self.track_type = track_type
        for k, v in kwargs.items():
            setattr(self, k, v)


class MockMediaInfo:
    def __init__(self, tracks):
        self.tracks = tracks

    @classmethod
    def parse(cls, path):
        return cls([
            MockTrack(
                duration=5000,
                recorded_date="2023-01-01 12:00:00",
                comapplequicktimemake="Apple",
                comapplequicktimemodel="iPhone 15",
                xyz="+37.7749-122.4194/",
            ),
            MockTrack("Video", width=1920, height=1080),
        ])


class FailingMediaInfo:
    @classmethod
    def parse(cls, path):
        raise OSError("libmediainfo missing")


def test_video_metadata_extraction(monkeypatch, tmp_path):
    monkeypatch.setattr(metadata_module, "MediaInfo", MockMediaInfo)

    vid = tmp_path / "test.mp4"
    vid.touch()

    meta = MetadataExtractor().get_video_metadata(vid)

    assert meta.creation_date == datetime(2023, 1, 1, 12, 0, 0)
    assert meta.duration == 5.0
    assert (meta.pixel_width, meta.pixel_height) == (1920, 1080)
    assert meta.device_make == "Apple"
    assert meta.device_model == "iPhone 15"
    assert meta.location == GeoLocation(37.7749, -122.4194)


def test_video_falls_back_to_exiftool(monkeypatch, tmp_path):
    monkeypatch.setattr(metadata_module, "MediaInfo", FailingMediaInfo)
    payload = json.dumps([{
        "CreateDate": "2022:03:04 05:06:07",
        "Duration": 12.5,
        "ImageWidth": 1280,
        "ImageHeight": 720,
        "Model": "GoPro",
        "GPSLatitude": -33.86,
        "GPSLongitude": 151.21,
    }])
    monkeypatch.setattr(subprocess, "check_output", lambda *a, **k: payload)

    vid = tmp_path / "clip.mov"
    vid.touch()
    meta = MetadataExtractor().get_video_metadata(vid)

    assert meta.creation_date == datetime(2022, 3, 4, 5, 6, 7)
    assert meta.duration == 12.5
    assert (meta.pixel_width, meta.pixel_height) == (1280, 720)
    assert meta.device_model == "GoPro"
    assert meta.location == GeoLocation(-33.86, 151.21)


def test_video_without_any_metadata(monkeypatch, tmp_path):
    monkeypatch.setattr(metadata_module, "MediaInfo", FailingMediaInfo)

    def missing_tool(*args, **kwargs):
        raise FileNotFoundError("exiftool")

    monkeypatch.setattr(subprocess, "check_output", missing_tool)
    vid = tmp_path / "clip.mp4"
    vid.touch()

    meta = MetadataExtractor().get_video_metadata(vid)
    assert meta.creation_date is None
    assert meta.duration == 0.0


def test_image_metadata_from_exif(tmp_path):
    path = tmp_path / "photo.jpg"
    exif = Image.Exif()
    exif[0x010F] = "Google"
    exif[0x0110] = "Pixel 7"
    exif[0x0132] = "2021:08:09 10:11:12"
    Image.new("RGB", (40, 30), "red").save(path, exif=exif)

    meta = MetadataExtractor().get_image_metadata(path)

    assert (meta.pixel_width, meta.pixel_height) == (40, 30)
    assert meta.device_make == "Google"
    assert meta.device_model == "Pixel 7"
    assert meta.creation_date == datetime(2021, 8, 9, 10, 11, 12)
    assert meta.location is None


def test_image_without_exif(tmp_path):
    path = tmp_path / "plain.png"
    Image.new("RGB", (8, 6), "blue").save(path)
    meta = MetadataExtractor().get_image_metadata(path)
    assert (meta.pixel_width, meta.pixel_height) == (8, 6)
    assert meta.creation_date is None


def test_unreadable_image_is_tolerated(tmp_path):
    path = tmp_path / "broken.jpg"
    path.write_bytes(b"not an image")
    meta = MetadataExtractor().get_image_metadata(path)
    assert (meta.pixel_width, meta.pixel_height) == (0, 0)


class Ratio(Fraction):
    @property
    def num(self):
        return self.numerator

    @property
    def den(self):
        return self.denominator


class Tag:
    def __init__(self, values):
        self.values = values

    def __str__(self):
        return str(self.values)


def test_exif_gps_conversion():
    tags = {
        "GPS GPSLatitude": Tag([Ratio(37), Ratio(46), Ratio(3042, 100)]),
        "GPS GPSLatitudeRef": "N",
        "GPS GPSLongitude": Tag([Ratio(122), Ratio(25), Ratio(0)]),
        "GPS GPSLongitudeRef": "W",
    }
    loc = MetadataExtractor()._parse_exif_gps(tags)
    assert loc.latitude == pytest.approx(37 + 46 / 60 + 30.42 / 3600)
    assert loc.longitude == pytest.approx(-(122 + 25 / 60))
    assert MetadataExtractor()._parse_exif_gps({}) is None


@pytest.mark.parametrize("raw,expected", [
    ("2020-01-01T12:00:00", datetime(2020, 1, 1, 12, 0, 0)),
    ("UTC 2020-01-01 12:00:00", datetime(2020, 1, 1, 12, 0, 0)),
    ("2020:01:01 12:00:00.123", datetime(2020, 1, 1, 12, 0, 0)),
    ("2020-01-01T12:00:00+02:00", datetime(2020, 1, 1, 12, 0, 0)),
    ("garbage", None),
])
def test_flexible_dates(raw, expected):
    assert MetadataExtractor()._parse_flexible_date(raw) == expected
