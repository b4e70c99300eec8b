"""
Interface of the media catalog the detection engine consumes.

Implementations block at this boundary; the engine never spins up its own
threads for asset resolution.
"""
import logging
from typing import Iterable, Iterator, Optional, Set

from PIL import Image

from ..models import AssetFilter, MetadataPatch


class AssetCatalog:
    """
    Base class for catalog collaborators.

    Failures that make the catalog unusable must be raised as
    CatalogAccessError. A thumbnail that cannot be decoded is a per-asset
    problem: return None or raise ThumbnailDecodeError.
    """

    def enumerate_assets(self, asset_filter: AssetFilter) -> Iterator:
        """Yields AssetRecords matching the filter, in catalog order."""
        raise NotImplementedError

    def byte_size(self, asset_id: str) -> int:
        raise NotImplementedError

    def decode_thumbnail(self, asset_id: str, max_dimension: int) -> Optional[Image.Image]:
        """
        Returns a decoded thumbnail no larger than max_dimension on either side.
        For videos this is the representative frame (see ScanSettings.video_frame_position).
        """
        raise NotImplementedError

    def content_hash(self, asset_id: str) -> Optional[str]:
        """Cryptographic digest of the raw bytes, when it is cheap to obtain."""
        return None

    def asset_exists(self, asset_ids: Iterable[str]) -> Set[str]:
        """Batched existence check. Returns the subset of ids still present."""
        raise NotImplementedError

    def delete_assets(self, asset_ids: Iterable[str]) -> None:
        raise NotImplementedError

    def update_asset_metadata(self, asset_id: str, patch: MetadataPatch) -> None:
        logging.debug(f"{type(self).__name__} does not store metadata edits; skipped {asset_id}")
