"""
Deleting duplicates and carrying their metadata over to the survivors.
"""
import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Set

from ..models import AssetRecord, DuplicateGroup, DuplicateItem, MetadataPatch


def survivor_patch(survivor: DuplicateItem, deleted: List[DuplicateItem]) -> MetadataPatch:
    """
    Metadata the survivor should inherit from deleted group-mates.

    The earliest creation date wins. A location is copied only when the
    survivor has none.
    """
    creation_date = None
    dates = [item.asset.creation_date for item in deleted if item.asset.creation_date]
    if dates:
        earliest = min(dates)
        if survivor.asset.creation_date is None or earliest < survivor.asset.creation_date:
            creation_date = earliest

    location = None
    if survivor.asset.location is None:
        location = next((item.asset.location for item in deleted if item.asset.location), None)

    return MetadataPatch(creation_date=creation_date, location=location)


def plan_metadata_merges(groups: Iterable[DuplicateGroup], doomed: Set[str]) -> Dict[str, MetadataPatch]:
    """Patches keyed by survivor asset id, one per group that loses members."""
    patches = {}
    for group in groups:
        deleted = [item for item in group.items if item.asset_id in doomed]
        survivors = [item for item in group.items if item.asset_id not in doomed]
        if not deleted or not survivors:
            continue
        patch = survivor_patch(survivors[0], deleted)
        if not patch.is_empty:
            patches[survivors[0].asset_id] = patch
    return patches


def apply_patch(asset: AssetRecord, patch: MetadataPatch) -> AssetRecord:
    return replace(
        asset,
        creation_date=patch.creation_date or asset.creation_date,
        location=asset.location or patch.location,
    )


def patch_groups(groups: Iterable[DuplicateGroup], patches: Dict[str, MetadataPatch]) -> List[DuplicateGroup]:
    """Groups with patched survivors rebuilt; untouched groups are returned as is."""
    patched = []
    for group in groups:
        if not any(item.asset_id in patches for item in group.items):
            patched.append(group)
            continue
        items = [
            DuplicateItem.from_asset(apply_patch(item.asset, patches[item.asset_id]), item.fingerprint,
                                     item_id=item.item_id)
            if item.asset_id in patches else item
            for item in group.items
        ]
        patched.append(DuplicateGroup.create(items, group.similarity_type, group.match_confidence))
    return patched


def delete_and_merge_metadata(catalog, groups: Iterable[DuplicateGroup],
                              asset_ids: Iterable[str]) -> List[DuplicateGroup]:
    """
    Applies survivor patches, then deletes the assets through the catalog.

    Metadata is written first so that a failing delete never loses the
    deleted assets' dates or locations. Returns the groups with survivors
    carrying their patched records; deleted members are still listed and
    are left for the pruner.
    """
    groups = list(groups)
    doomed = set(asset_ids)
    if not doomed:
        return groups

    patches = plan_metadata_merges(groups, doomed)
    for survivor_id, patch in patches.items():
        logging.info(f"Merging metadata into surviving asset {survivor_id}")
        catalog.update_asset_metadata(survivor_id, patch)

    logging.info(f"Deleting {len(doomed)} assets")
    catalog.delete_assets(sorted(doomed))
    return patch_groups(groups, patches)
