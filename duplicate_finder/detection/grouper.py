import logging
from typing import Dict, Iterable, List

from .. import config
from ..models import AssetRecord, MediaKind

COMPARABLE_KINDS = (MediaKind.IMAGE, MediaKind.VIDEO)


class CandidateGrouper:
    """
    Partitions assets into coarse buckets from cheap metadata only.

    Runs before any perceptual hashing: only assets sharing a bucket key are
    ever compared, which keeps the scan far below a full pairwise pass.
    """

    def __init__(self, strategy: str = config.BUCKET_STRATEGY_COARSE):
        if strategy not in config.BUCKET_STRATEGIES:
            raise ValueError(f"Unknown bucket strategy: {strategy!r}")
        self.strategy = strategy

    def bucket_key(self, asset: AssetRecord) -> str:
        kind = asset.media_kind.value
        w, h = asset.pixel_width, asset.pixel_height

        if asset.media_kind == MediaKind.VIDEO:
            # Integer seconds, truncated
            return f"{kind}_{w}_{h}_{int(asset.duration)}"

        if self.strategy == config.BUCKET_STRATEGY_QUICK:
            size_category = asset.byte_size // config.SIZE_BUCKET_BYTES
            return f"{kind}_{w}_{h}_s{size_category}"

        aspect_category = int(w / h * config.ASPECT_BUCKET_FACTOR) if h else 0
        return f"{kind}_{w}_{h}_a{aspect_category}"

    def group(self, assets: Iterable[AssetRecord]) -> Dict[str, List[AssetRecord]]:
        """Single sequential pass. Buckets keep catalog order."""
        buckets: Dict[str, List[AssetRecord]] = {}
        for asset in assets:
            if asset.media_kind not in COMPARABLE_KINDS:
                continue
            buckets.setdefault(self.bucket_key(asset), []).append(asset)
        return buckets

    def candidate_buckets(self, assets: Iterable[AssetRecord]) -> Dict[str, List[AssetRecord]]:
        """Only buckets with at least two members are worth comparing."""
        buckets = self.group(assets)
        candidates = {key: members for key, members in buckets.items() if len(members) > 1}
        logging.info(f"Grouped assets into {len(buckets)} buckets, {len(candidates)} with candidates")
        return candidates
