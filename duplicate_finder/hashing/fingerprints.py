"""
Session-scoped fingerprint cache.
"""
import logging
import threading
from typing import Dict, Optional

from .. import config
from ..exceptions import HashComputationError
from ..models import AssetRecord, Fingerprint, MediaKind, PerceptualHash
from .codec import HashCodec


class FingerprintCache:
    """
    Memoizes each asset's fingerprint, keyed by asset identifier.

    Safe to share between comparator workers. Computation happens outside the
    lock; two workers racing on the same asset both compute and the last
    write wins, which is harmless because the result is deterministic.

    When the catalog supplies a content digest already seen this session,
    the perceptual hash of that earlier asset is reused and the thumbnail is
    never decoded.
    """

    def __init__(self, catalog, codec: Optional[HashCodec] = None,
                 thumbnail_max_dimension: int = config.THUMBNAIL_MAX_DIMENSION):
        self.catalog = catalog
        self.codec = codec or HashCodec()
        self.thumbnail_max_dimension = thumbnail_max_dimension
        self._entries: Dict[str, Fingerprint] = {}
        self._by_content_hash: Dict[str, PerceptualHash] = {}
        self._lock = threading.Lock()

    def get(self, asset_id: str) -> Optional[Fingerprint]:
        with self._lock:
            return self._entries.get(asset_id)

    def put(self, asset_id: str, fingerprint: Fingerprint):
        with self._lock:
            self._entries[asset_id] = fingerprint
            if fingerprint.content_hash and fingerprint.perceptual_hash:
                self._by_content_hash[fingerprint.content_hash] = fingerprint.perceptual_hash

    def get_or_compute(self, asset: AssetRecord) -> Fingerprint:
        cached = self.get(asset.identifier)
        if cached is not None:
            return cached

        fingerprint = self._compute(asset)
        self.put(asset.identifier, fingerprint)
        return fingerprint

    def invalidate(self, asset_id: str):
        with self._lock:
            self._entries.pop(asset_id, None)

    def clear(self):
        with self._lock:
            self._entries.clear()
            self._by_content_hash.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, asset_id: str) -> bool:
        with self._lock:
            return asset_id in self._entries

    def _compute(self, asset: AssetRecord) -> Fingerprint:
        byte_size = asset.byte_size or self.catalog.byte_size(asset.identifier)
        content_hash = self.catalog.content_hash(asset.identifier)

        perceptual = None
        if content_hash:
            with self._lock:
                perceptual = self._by_content_hash.get(content_hash)

        if perceptual is None and asset.media_kind in (MediaKind.IMAGE, MediaKind.VIDEO):
            perceptual = self._perceptual_hash(asset)

        return Fingerprint(
            byte_size=byte_size,
            media_kind=asset.media_kind,
            content_hash=content_hash,
            perceptual_hash=perceptual,
        )

    def _perceptual_hash(self, asset: AssetRecord) -> Optional[PerceptualHash]:
        """Decodes and hashes the thumbnail; failures leave the hash absent."""
        try:
            thumbnail = self.catalog.decode_thumbnail(asset.identifier, self.thumbnail_max_dimension)
            if thumbnail is None:
                logging.debug(f"No thumbnail available for {asset.identifier}")
                return None
            return self.codec.compute(thumbnail)
        except HashComputationError as e:
            logging.warning(f"Perceptual hash unavailable for {asset.identifier}: {e}")
            return None
