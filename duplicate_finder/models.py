import math
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple, FrozenSet

from . import config
from .exceptions import GroupInvariantError

EARTH_RADIUS_METERS = 6371000.0


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    UNKNOWN = "unknown"


class SimilarityType(str, Enum):
    EXACT = "exact"
    SIMILAR = "similar"

    @property
    def description(self) -> str:
        if self is SimilarityType.EXACT:
            return "Identical content with same dimensions and metadata"
        return "Visually similar content that may be variations"


@dataclass(frozen=True)
class GeoLocation:
    latitude: float
    longitude: float

    def distance_to(self, other: "GeoLocation") -> float:
        """Great-circle distance in meters (haversine)."""
        lat1, lat2 = math.radians(self.latitude), math.radians(other.latitude)
        dlat = lat2 - lat1
        dlon = math.radians(other.longitude - self.longitude)
        h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
        return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(h)))

    def display(self) -> str:
        return f"{self.latitude:.6f}, {self.longitude:.6f}"


@dataclass(frozen=True)
class AssetRecord:
    """
    Read-only view of one catalog asset.
    The catalog owns it; the detection engine never mutates it.
    """
    identifier: str
    media_kind: MediaKind
    pixel_width: int
    pixel_height: int
    duration: float = 0.0           # seconds, 0 for images
    byte_size: int = 0
    creation_date: Optional[datetime] = None
    location: Optional[GeoLocation] = None
    device_make: Optional[str] = None
    device_model: Optional[str] = None


@dataclass(frozen=True)
class PerceptualHash:
    """Three 64-bit perceptual hashes of the same thumbnail."""
    p: int
    d: int
    a: int

    def to_hex(self) -> str:
        return f"{self.p:016x}{self.d:016x}{self.a:016x}"

    @classmethod
    def from_hex(cls, value: str) -> "PerceptualHash":
        if len(value) != 48:
            raise ValueError(f"Expected 48 hex characters, got {len(value)}")
        return cls(p=int(value[0:16], 16), d=int(value[16:32], 16), a=int(value[32:48], 16))


@dataclass(frozen=True)
class Fingerprint:
    """Session-scoped content identity of an asset."""
    byte_size: int
    media_kind: MediaKind
    content_hash: Optional[str] = None
    perceptual_hash: Optional[PerceptualHash] = None


def _format_duration(seconds: float) -> str:
    minutes = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{minutes}:{secs:02d}"


@dataclass(frozen=True)
class DuplicateItem:
    """
    One asset inside a duplicate group.

    `item_id` is freshly generated per construction, so the same asset gets a
    new item id whenever a group is rebuilt; `asset_id` stays stable.
    """
    item_id: str
    asset: AssetRecord
    fingerprint: Optional[Fingerprint]
    dimensions: str
    duration_display: Optional[str]
    location_display: Optional[str]

    @classmethod
    def from_asset(cls, asset: AssetRecord, fingerprint: Optional[Fingerprint] = None,
                   item_id: Optional[str] = None) -> "DuplicateItem":
        return cls(
            item_id=item_id or uuid.uuid4().hex,
            asset=asset,
            fingerprint=fingerprint,
            dimensions=f"{asset.pixel_width} × {asset.pixel_height}",
            duration_display=_format_duration(asset.duration) if asset.media_kind == MediaKind.VIDEO else None,
            location_display=asset.location.display() if asset.location else None,
        )

    @property
    def asset_id(self) -> str:
        return self.asset.identifier

    @property
    def byte_size(self) -> int:
        if self.fingerprint and self.fingerprint.byte_size:
            return self.fingerprint.byte_size
        return self.asset.byte_size


def group_id_for(asset_ids: Iterable[str]) -> str:
    """Deterministic group id: sorted asset identifiers joined."""
    return config.GROUP_ID_SEPARATOR.join(sorted(asset_ids))


@dataclass(frozen=True)
class DuplicateGroup:
    id: str
    items: Tuple[DuplicateItem, ...]
    similarity_type: SimilarityType
    match_confidence: float

    def __post_init__(self):
        if len(self.items) < 2:
            raise GroupInvariantError(f"Duplicate group needs at least 2 items, got {len(self.items)}")
        ids = [item.asset_id for item in self.items]
        if len(set(ids)) != len(ids):
            raise GroupInvariantError(f"Duplicate group lists an asset twice: {ids}")
        if self.id != group_id_for(ids):
            raise GroupInvariantError(f"Group id {self.id!r} does not match its members")
        if not 0.0 <= self.match_confidence <= 1.0:
            raise GroupInvariantError(f"Confidence out of range: {self.match_confidence}")

    @classmethod
    def create(cls, items: Sequence[DuplicateItem], similarity_type: SimilarityType,
               match_confidence: float = 1.0) -> "DuplicateGroup":
        items = tuple(items)
        return cls(
            id=group_id_for(item.asset_id for item in items),
            items=items,
            similarity_type=similarity_type,
            match_confidence=match_confidence,
        )

    @property
    def asset_ids(self) -> FrozenSet[str]:
        return frozenset(item.asset_id for item in self.items)

    @property
    def representative(self) -> DuplicateItem:
        return self.items[0]

    @property
    def media_kind(self) -> MediaKind:
        return self.items[0].asset.media_kind

    @property
    def total_size(self) -> int:
        return sum(item.byte_size for item in self.items)

    @property
    def creation_dates(self) -> List[datetime]:
        return sorted(item.asset.creation_date for item in self.items if item.asset.creation_date)

    @property
    def has_multiple_dates(self) -> bool:
        dates = self.creation_dates
        if len(dates) < 2:
            return False
        return any(abs((d - dates[0]).total_seconds()) > config.MULTIPLE_DATES_SECONDS for d in dates)

    @property
    def mismatched_properties(self) -> List[str]:
        """Names of properties that differ noticeably across the group's items."""
        mismatches = []
        first = self.items[0].asset
        rest = [item.asset for item in self.items[1:]]

        devices = {a.device_model for a in [first] + rest if a.device_model}
        if len(devices) > 1:
            mismatches.append("Devices")

        if first.location:
            for other in rest:
                if other.location is None or \
                        first.location.distance_to(other.location) > config.LOCATION_MATCH_METERS:
                    mismatches.append("Locations")
                    break
        elif any(other.location is not None for other in rest):
            mismatches.append("Locations")

        if len({item.dimensions for item in self.items}) > 1:
            mismatches.append("Dimensions")

        sizes = [item.byte_size for item in self.items]
        if max(sizes) > 0 and (max(sizes) - min(sizes)) / max(sizes) > config.SIZE_MISMATCH_RATIO:
            mismatches.append("Sizes")

        if first.creation_date:
            for other in rest:
                if other.creation_date and \
                        abs((first.creation_date - other.creation_date).total_seconds()) > config.DATE_MISMATCH_SECONDS:
                    mismatches.append("Dates")
                    break

        return mismatches


@dataclass(frozen=True)
class ScanResult:
    """Boundary record handed to the persistence layer."""
    scan_date: datetime
    groups: Tuple[DuplicateGroup, ...]
    total_assets_scanned: int
    last_asset_date: Optional[datetime] = None

    @property
    def exact_groups(self) -> List[DuplicateGroup]:
        return [g for g in self.groups if g.similarity_type == SimilarityType.EXACT]

    @property
    def similar_groups(self) -> List[DuplicateGroup]:
        return [g for g in self.groups if g.similarity_type == SimilarityType.SIMILAR]

    @property
    def duplicates_found(self) -> int:
        return sum(len(g.items) for g in self.groups)

    def with_groups(self, groups: Iterable[DuplicateGroup]) -> "ScanResult":
        return replace(self, groups=tuple(groups))


@dataclass(frozen=True)
class AssetFilter:
    """Enumeration filter: everything, or only assets created after a watermark."""
    created_after: Optional[datetime] = None

    @classmethod
    def all(cls) -> "AssetFilter":
        return cls()

    @classmethod
    def newer_than(cls, watermark: datetime) -> "AssetFilter":
        return cls(created_after=watermark)

    def matches(self, asset: AssetRecord) -> bool:
        if self.created_after is None:
            return True
        return asset.creation_date is not None and asset.creation_date > self.created_after


@dataclass(frozen=True)
class MetadataPatch:
    """Metadata to write onto a surviving asset after its duplicates are deleted."""
    creation_date: Optional[datetime] = None
    location: Optional[GeoLocation] = None

    @property
    def is_empty(self) -> bool:
        return self.creation_date is None and self.location is None


@dataclass(frozen=True)
class ScanStats:
    total_assets_scanned: int
    duplicates_found: int
    duplicate_groups: int
    total_size: int
    scan_duration: float


@dataclass
class DuplicateFilter:
    """Narrows a result set for display or export."""
    media_kind: Optional[MediaKind] = None
    similarity_type: Optional[SimilarityType] = None
    min_confidence: float = 0.8
    min_total_size: Optional[int] = None
    max_total_size: Optional[int] = None
    date_range: Optional[Tuple[datetime, datetime]] = None

    def should_include(self, group: DuplicateGroup) -> bool:
        if self.similarity_type is not None and (
                group.similarity_type != self.similarity_type or group.match_confidence < self.min_confidence):
            return False

        if self.media_kind is not None and group.media_kind != self.media_kind:
            return False

        total = group.total_size
        if self.min_total_size is not None and total < self.min_total_size:
            return False
        if self.max_total_size is not None and total > self.max_total_size:
            return False

        if self.date_range is not None:
            dates = group.creation_dates
            if dates and not (self.date_range[0] <= dates[0] <= self.date_range[1]):
                return False

        return True

    def apply(self, groups: Iterable[DuplicateGroup]) -> List[DuplicateGroup]:
        return [g for g in groups if self.should_include(g)]
