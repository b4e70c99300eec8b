import logging
from dataclasses import replace
from typing import Any, Dict, Iterable, Iterator, Optional, Set

from ..exceptions import CatalogAccessError, ThumbnailDecodeError
from ..models import AssetFilter, AssetRecord, MetadataPatch
from .base import AssetCatalog


class InMemoryCatalog(AssetCatalog):
    """
    Catalog held entirely in memory.

    Used by tests and by callers that already have asset records and decoded
    thumbnails at hand (thumbnails may be PIL images or pixel arrays).
    """

    def __init__(self):
        self._records: Dict[str, AssetRecord] = {}
        self._thumbnails: Dict[str, Any] = {}
        self._content_hashes: Dict[str, str] = {}

    def add(self, asset: AssetRecord, thumbnail: Any = None, content_hash: Optional[str] = None):
        self._records[asset.identifier] = asset
        if thumbnail is not None:
            self._thumbnails[asset.identifier] = thumbnail
        if content_hash is not None:
            self._content_hashes[asset.identifier] = content_hash

    def remove(self, asset_id: str):
        self._records.pop(asset_id, None)
        self._thumbnails.pop(asset_id, None)
        self._content_hashes.pop(asset_id, None)

    def get(self, asset_id: str) -> Optional[AssetRecord]:
        return self._records.get(asset_id)

    def __len__(self) -> int:
        return len(self._records)

    # --- AssetCatalog ---

    def enumerate_assets(self, asset_filter: AssetFilter) -> Iterator[AssetRecord]:
        for record in list(self._records.values()):
            if asset_filter.matches(record):
                yield record

    def byte_size(self, asset_id: str) -> int:
        record = self._records.get(asset_id)
        if record is None:
            raise CatalogAccessError(f"Unknown asset {asset_id}")
        return record.byte_size

    def decode_thumbnail(self, asset_id: str, max_dimension: int) -> Any:
        thumb = self._thumbnails.get(asset_id)
        if thumb is None:
            raise ThumbnailDecodeError(f"No thumbnail for {asset_id}")
        return thumb

    def content_hash(self, asset_id: str) -> Optional[str]:
        return self._content_hashes.get(asset_id)

    def asset_exists(self, asset_ids: Iterable[str]) -> Set[str]:
        return {asset_id for asset_id in asset_ids if asset_id in self._records}

    def delete_assets(self, asset_ids: Iterable[str]) -> None:
        for asset_id in asset_ids:
            self.remove(asset_id)

    def update_asset_metadata(self, asset_id: str, patch: MetadataPatch) -> None:
        record = self._records.get(asset_id)
        if record is None:
            logging.warning(f"Cannot update metadata of missing asset {asset_id}")
            return
        changes = {}
        if patch.creation_date is not None:
            changes['creation_date'] = patch.creation_date
        if patch.location is not None:
            changes['location'] = patch.location
        self._records[asset_id] = replace(record, **changes)
