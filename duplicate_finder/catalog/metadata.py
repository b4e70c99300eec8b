import json
import logging
import re
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import exifread
from PIL import Image
from pymediainfo import MediaInfo

from .. import config
from ..models import GeoLocation

# ISO 6709 "+DD.DDDD+DDD.DDDD/" as written by phones into MP4/MOV containers
ISO6709_PATTERN = re.compile(r'([+-]\d+(?:\.\d+)?)([+-]\d+(?:\.\d+)?)')


@dataclass
class MediaMetadata:
    creation_date: Optional[datetime] = None
    pixel_width: int = 0
    pixel_height: int = 0
    duration: float = 0.0
    location: Optional[GeoLocation] = None
    device_make: Optional[str] = None
    device_model: Optional[str] = None


class MetadataExtractor:
    """
    Unified interface for extracting metadata from media files.

    Strategies:
      - Images: 'exifread' for dates, device and GPS, Pillow for dimensions.
      - Video: 'pymediainfo' (fast wrapper) -> falls back to 'exiftool' (robust).
    """

    def get_image_metadata(self, path: Path) -> MediaMetadata:
        meta = MediaMetadata()

        try:
            with Image.open(path) as img:
                meta.pixel_width, meta.pixel_height = img.size
        except (OSError, Image.DecompressionBombError) as e:
            logging.warning(f"Could not read image size for {path}: {e}")

        try:
            with path.open('rb') as f:
                # details=False skips maker notes and thumbnails
                tags = exifread.process_file(f, details=False)
        except Exception as e:
            logging.warning(f"ExifRead failed for {path}: {e}")
            return meta

        meta.creation_date = self._parse_exif_date(tags)
        if 'Image Make' in tags:
            meta.device_make = str(tags['Image Make']).strip() or None
        if 'Image Model' in tags:
            meta.device_model = str(tags['Image Model']).strip() or None
        meta.location = self._parse_exif_gps(tags)
        return meta

    def get_video_metadata(self, path: Path) -> MediaMetadata:
        # Strategy 1: MediaInfo (fastest, usually sufficient)
        try:
            meta = self._extract_mediainfo(path)
            if meta.creation_date or meta.duration:
                return meta
        except Exception as e:
            logging.debug(f"MediaInfo failed for {path}: {e}")

        # Strategy 2: ExifTool (requires system install)
        try:
            meta = self._extract_exiftool(path)
            if meta.creation_date or meta.duration:
                return meta
        except (OSError, subprocess.CalledProcessError, ValueError) as e:
            logging.debug(f"ExifTool failed for {path}: {e}")

        return MediaMetadata()

    # --- Internal Extraction Helpers ---

    def _extract_mediainfo(self, path: Path) -> MediaMetadata:
        mi = MediaInfo.parse(str(path))
        meta = MediaMetadata()

        for track in mi.tracks:
            if track.track_type == "General":
                if getattr(track, "duration", None):
                    # MediaInfo duration is in milliseconds
                    meta.duration = float(track.duration) / 1000.0

                # Priority: Original -> Encoded -> Tagged
                for field in ("recorded_date", "encoded_date", "tagged_date"):
                    val = getattr(track, field, None)
                    if val:
                        dt = self._parse_flexible_date(str(val))
                        if dt:
                            meta.creation_date = dt
                            break

                meta.device_make = getattr(track, "comapplequicktimemake", None) or None
                meta.device_model = (
                    getattr(track, "comapplequicktimemodel", None) or
                    getattr(track, "performer", None) or
                    None
                )

                location = (
                    getattr(track, "xyz", None) or
                    getattr(track, "comapplequicktimelocationiso6709", None)
                )
                if location:
                    meta.location = self._parse_iso6709(str(location))

            elif track.track_type == "Video" and not meta.pixel_width:
                meta.pixel_width = int(getattr(track, "width", 0) or 0)
                meta.pixel_height = int(getattr(track, "height", 0) or 0)

        return meta

    def _extract_exiftool(self, path: Path) -> MediaMetadata:
        """
        Wraps the 'exiftool' command line utility.
        Must be installed and on the system PATH.
        """
        # -j = JSON output, -n = numeric values (seconds, decimal degrees)
        cmd = ["exiftool", "-j", "-n", str(path)]
        out = subprocess.check_output(cmd, stderr=subprocess.DEVNULL, text=True)
        data_list = json.loads(out)

        meta = MediaMetadata()
        if not data_list:
            return meta
        tags: Dict[str, Any] = data_list[0]

        for field in ("CreateDate", "CreationDate", "DateTimeOriginal", "MediaCreateDate"):
            if tags.get(field):
                dt = self._parse_flexible_date(str(tags[field]))
                if dt:
                    meta.creation_date = dt
                    break

        if tags.get("Duration"):
            try:
                meta.duration = float(tags["Duration"])
            except (TypeError, ValueError):
                pass

        meta.pixel_width = int(tags.get("ImageWidth") or 0)
        meta.pixel_height = int(tags.get("ImageHeight") or 0)
        meta.device_make = tags.get("Make")
        meta.device_model = tags.get("Model") or tags.get("CameraModelName")

        lat, lon = tags.get("GPSLatitude"), tags.get("GPSLongitude")
        if isinstance(lat, (int, float)) and isinstance(lon, (int, float)):
            meta.location = GeoLocation(float(lat), float(lon))

        return meta

    def _parse_exif_date(self, tags) -> Optional[datetime]:
        for tag in config.DATE_TAGS:
            if tag in tags:
                try:
                    # EXIF format is usually "YYYY:MM:DD HH:MM:SS"
                    dt_str = str(tags[tag]).replace(':', '-', 2)
                    return datetime.strptime(dt_str, "%Y-%m-%d %H:%M:%S")
                except ValueError:
                    continue
        return None

    def _parse_exif_gps(self, tags) -> Optional[GeoLocation]:
        try:
            lat = self._dms_to_degrees(tags['GPS GPSLatitude'].values)
            lon = self._dms_to_degrees(tags['GPS GPSLongitude'].values)
        except (KeyError, AttributeError, ZeroDivisionError, IndexError):
            return None

        if str(tags.get('GPS GPSLatitudeRef', 'N')).strip().upper() == 'S':
            lat = -lat
        if str(tags.get('GPS GPSLongitudeRef', 'E')).strip().upper() == 'W':
            lon = -lon
        return GeoLocation(lat, lon)

    @staticmethod
    def _dms_to_degrees(values) -> float:
        """Degrees/minutes/seconds as exifread Ratios to decimal degrees."""
        parts = [float(v.num) / float(v.den) for v in values]
        degrees, minutes, seconds = (parts + [0.0, 0.0])[:3]
        return degrees + minutes / 60.0 + seconds / 3600.0

    @staticmethod
    def _parse_iso6709(value: str) -> Optional[GeoLocation]:
        match = ISO6709_PATTERN.match(value.strip())
        if not match:
            return None
        return GeoLocation(float(match.group(1)), float(match.group(2)))

    def _parse_flexible_date(self, dt_str: str) -> Optional[datetime]:
        """
        Handles various date formats (ISO, UTC suffixes, Exiftool quirks).
        Returns a naive datetime object.
        """
        if not dt_str:
            return None

        clean = dt_str.replace("UTC", "").strip()

        try:
            return datetime.fromisoformat(clean).replace(tzinfo=None)
        except ValueError:
            pass

        try:
            clean_exif = clean.replace(":", "-", 2)
            if "." in clean_exif:
                clean_exif = clean_exif.split(".")[0]
            return datetime.strptime(clean_exif, "%Y-%m-%d %H:%M:%S")
        except ValueError:
            pass

        return None
