"""
ScanResult <-> JSON document.

Document shape:
    {"scanDate", "lastAssetDate", "totalAssetsScanned",
     "groups": [{"id", "similarityType", "matchConfidence", "items": [...]}]}
Fingerprints are session data and are never written.
"""
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from .exceptions import GroupInvariantError, ScanResultCorruptError
from .models import (AssetRecord, DuplicateGroup, DuplicateItem, GeoLocation, MediaKind,
                     ScanResult, SimilarityType)


def _dt_out(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _dt_in(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def item_to_dict(item: DuplicateItem) -> Dict[str, Any]:
    a = item.asset
    return {
        "id": item.item_id,
        "assetId": a.identifier,
        "mediaKind": a.media_kind.value,
        "pixelWidth": a.pixel_width,
        "pixelHeight": a.pixel_height,
        "duration": a.duration,
        "byteSize": item.byte_size,
        "creationDate": _dt_out(a.creation_date),
        "location": {"latitude": a.location.latitude, "longitude": a.location.longitude} if a.location else None,
        "deviceMake": a.device_make,
        "deviceModel": a.device_model,
    }


def item_from_dict(data: Dict[str, Any]) -> DuplicateItem:
    loc = data.get("location")
    asset = AssetRecord(
        identifier=str(data["assetId"]),
        media_kind=MediaKind(data["mediaKind"]),
        pixel_width=int(data.get("pixelWidth", 0)),
        pixel_height=int(data.get("pixelHeight", 0)),
        duration=float(data.get("duration", 0.0)),
        byte_size=int(data.get("byteSize", 0)),
        creation_date=_dt_in(data.get("creationDate")),
        location=GeoLocation(float(loc["latitude"]), float(loc["longitude"])) if loc else None,
        device_make=data.get("deviceMake"),
        device_model=data.get("deviceModel"),
    )
    return DuplicateItem.from_asset(asset, item_id=data.get("id"))


def to_dict(result: ScanResult) -> Dict[str, Any]:
    return {
        "scanDate": _dt_out(result.scan_date),
        "lastAssetDate": _dt_out(result.last_asset_date),
        "totalAssetsScanned": result.total_assets_scanned,
        "groups": [
            {
                "id": g.id,
                "similarityType": g.similarity_type.value,
                "matchConfidence": g.match_confidence,
                "items": [item_to_dict(item) for item in g.items],
            }
            for g in result.groups
        ],
    }


def from_dict(data: Dict[str, Any]) -> ScanResult:
    """Raises ScanResultCorruptError for anything that does not decode into valid groups."""
    try:
        groups = tuple(
            DuplicateGroup(
                id=g["id"],
                items=tuple(item_from_dict(i) for i in g["items"]),
                similarity_type=SimilarityType(g["similarityType"]),
                match_confidence=float(g.get("matchConfidence", 1.0)),
            )
            for g in data["groups"]
        )
        return ScanResult(
            scan_date=_dt_in(data["scanDate"]),
            groups=groups,
            total_assets_scanned=int(data.get("totalAssetsScanned", 0)),
            last_asset_date=_dt_in(data.get("lastAssetDate")),
        )
    except (KeyError, TypeError, ValueError, GroupInvariantError) as e:
        raise ScanResultCorruptError(f"Invalid scan result document: {e}") from e


def dumps(result: ScanResult) -> str:
    return json.dumps(to_dict(result), indent=2, ensure_ascii=False)


def loads(text: str) -> ScanResult:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ScanResultCorruptError(f"Not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ScanResultCorruptError("Scan result document must be an object")
    return from_dict(data)


def dump(result: ScanResult, path: Path):
    Path(path).write_text(dumps(result), encoding="utf-8")
    logging.info(f"Exported scan result to {path}")


def load(path: Path) -> Optional[ScanResult]:
    """Missing or corrupt documents load as None."""
    try:
        return loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, ScanResultCorruptError) as e:
        logging.warning(f"Ignoring unreadable scan result {path}: {e}")
        return None
