import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from ..models import AssetRecord, DuplicateGroup, DuplicateItem, Fingerprint, SimilarityType
from .comparator import MatchCluster


class GroupAssembler:
    """Turns comparator clusters into DuplicateGroups with deterministic ids."""

    def assemble(self, members: Sequence[Tuple[AssetRecord, Optional[Fingerprint]]],
                 similarity_type: SimilarityType, confidence: float) -> Optional[DuplicateGroup]:
        seen = set()
        items: List[DuplicateItem] = []
        for asset, fingerprint in members:
            if asset.identifier in seen:
                continue
            seen.add(asset.identifier)
            items.append(DuplicateItem.from_asset(asset, fingerprint))

        if len(items) < 2:
            return None

        return DuplicateGroup.create(items, similarity_type, max(0.0, min(1.0, confidence)))

    def assemble_clusters(self, clusters: Iterable[MatchCluster]) -> List[DuplicateGroup]:
        groups = []
        for cluster in clusters:
            group = self.assemble(cluster.members, cluster.similarity_type, cluster.confidence)
            if group is not None:
                groups.append(group)
        logging.debug(f"Assembled {len(groups)} groups")
        return groups
