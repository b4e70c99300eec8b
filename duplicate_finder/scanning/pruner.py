import logging
from typing import Iterable, List, Set

from .. import config
from ..models import DuplicateGroup


class StalePruner:
    """
    Drops items whose assets left the catalog, and groups that fall below two items.

    Existence is checked in batches. Groups whose members all survive are
    returned as the same objects, so pruning twice equals pruning once.
    """

    def __init__(self, catalog, batch_size: int = config.EXISTENCE_BATCH_SIZE):
        self.catalog = catalog
        self.batch_size = batch_size

    def existing_ids(self, asset_ids: Iterable[str]) -> Set[str]:
        ids = sorted(set(asset_ids))
        present: Set[str] = set()
        for start in range(0, len(ids), self.batch_size):
            batch = ids[start:start + self.batch_size]
            present |= set(self.catalog.asset_exists(batch))
        return present

    def prune(self, groups: Iterable[DuplicateGroup]) -> List[DuplicateGroup]:
        groups = list(groups)
        present = self.existing_ids(a for g in groups for a in g.asset_ids)

        kept = []
        dropped_items = 0
        for group in groups:
            items = [item for item in group.items if item.asset_id in present]
            dropped_items += len(group.items) - len(items)
            if len(items) == len(group.items):
                kept.append(group)
            elif len(items) >= 2:
                kept.append(DuplicateGroup.create(items, group.similarity_type, group.match_confidence))

        if dropped_items:
            logging.info(f"Pruned {dropped_items} stale items; {len(groups) - len(kept)} groups removed")
        return kept
