"""
Full and incremental scan orchestration.

State machine: IDLE -> GROUPING -> COMPARING -> MERGING -> COMPLETE for a
full scan, IDLE -> PRUNING -> GROUPING_NEW -> COMPARING_NEW ->
COMPARING_AGAINST_EXISTING -> MERGING -> COMPLETE for a delta scan. Any
step may end in ERROR (catalog failure) or CANCELLED.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set

from ..config import ScanSettings
from ..detection.assembler import GroupAssembler
from ..detection.comparator import SimilarityComparator, rank_match
from ..detection.grouper import COMPARABLE_KINDS, CandidateGrouper
from ..exceptions import CatalogAccessError, DuplicateFinderError, ScanCancelledError
from ..hashing.codec import HashCodec
from ..hashing.fingerprints import FingerprintCache
from ..models import (AssetFilter, AssetRecord, DuplicateGroup, DuplicateItem, ScanResult,
                      ScanStats, SimilarityType)
from .progress import CancellationToken, ProgressCallback, ProgressReporter, ScanPhase
from .pruner import StalePruner
from .reconcile import delete_and_merge_metadata


def merge_groups(groups: Sequence[DuplicateGroup]) -> List[DuplicateGroup]:
    """
    Unions every set of groups that share an asset until none overlap.

    Earlier groups keep their item order and win when an asset appears in
    several groups. A component made of a single group is returned unchanged.
    """
    parent = list(range(len(groups)))

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    owner: Dict[str, int] = {}
    for index, group in enumerate(groups):
        for asset_id in group.asset_ids:
            if asset_id in owner:
                root_a, root_b = find(owner[asset_id]), find(index)
                if root_a != root_b:
                    parent[max(root_a, root_b)] = min(root_a, root_b)
            else:
                owner[asset_id] = index

    components: Dict[int, List[DuplicateGroup]] = {}
    for index, group in enumerate(groups):
        components.setdefault(find(index), []).append(group)

    merged = []
    for members in components.values():
        if len(members) == 1:
            merged.append(members[0])
            continue
        seen = set()
        items = []
        for group in members:
            for item in group.items:
                if item.asset_id not in seen:
                    seen.add(item.asset_id)
                    items.append(item)
        all_exact = all(g.similarity_type == SimilarityType.EXACT for g in members)
        merged.append(DuplicateGroup.create(
            items,
            SimilarityType.EXACT if all_exact else SimilarityType.SIMILAR,
            min(g.match_confidence for g in members),
        ))
    return merged


def _newest_date(assets: Iterable[AssetRecord], floor: Optional[datetime] = None) -> Optional[datetime]:
    newest = floor
    for asset in assets:
        if asset.creation_date and (newest is None or asset.creation_date > newest):
            newest = asset.creation_date
    return newest


class ScanCoordinator:
    """
    Runs full, delta and refresh scans against one catalog.

    Owns the session's FingerprintCache. Bucket comparisons run on a bounded
    thread pool; everything after comparison is single-threaded.
    """

    def __init__(self, catalog, settings: Optional[ScanSettings] = None,
                 fingerprints: Optional[FingerprintCache] = None,
                 progress_callback: Optional[ProgressCallback] = None,
                 cancel_token: Optional[CancellationToken] = None):
        self.catalog = catalog
        self.settings = settings or ScanSettings()
        self.fingerprints = fingerprints or FingerprintCache(
            catalog,
            HashCodec(grid_size=self.settings.hash_grid_size),
            self.settings.thumbnail_max_dimension,
        )
        self.progress = ProgressReporter(progress_callback)
        self.cancel_token = cancel_token or CancellationToken()
        self.grouper = CandidateGrouper(self.settings.bucket_strategy)
        self.comparator = SimilarityComparator(self.fingerprints, self.settings)
        self.assembler = GroupAssembler()
        self.pruner = StalePruner(catalog, self.settings.existence_batch_size)
        self.stats: Optional[ScanStats] = None

    @property
    def state(self) -> ScanPhase:
        return self.progress.phase

    def cancel(self):
        logging.info("Scan cancellation requested")
        self.cancel_token.cancel()

    # --- Scans ---

    def run_full_scan(self) -> ScanResult:
        return self._run(self._full_scan)

    def run_delta_scan(self, previous: Optional[ScanResult]) -> ScanResult:
        if previous is None or previous.last_asset_date is None:
            logging.info("No usable previous scan; running a full scan")
            return self.run_full_scan()
        return self._run(self._delta_scan, previous)

    def refresh(self, current: ScanResult) -> ScanResult:
        """Prunes stale items without hashing anything. Keeps the scan date."""
        return self._run(self._refresh, current)

    def delete_assets_and_reconcile(self, asset_ids: Iterable[str], current: ScanResult) -> ScanResult:
        """Deletes assets, carries their metadata to survivors and prunes. Keeps the scan date."""
        return self._run(self._delete_and_reconcile, set(asset_ids), current)

    def count_new_assets(self, previous: Optional[ScanResult]) -> int:
        if previous is None or previous.last_asset_date is None:
            asset_filter = AssetFilter.all()
        else:
            asset_filter = AssetFilter.newer_than(previous.last_asset_date)
        return len(self._enumerate(asset_filter))

    # --- Internals ---

    def _run(self, operation, *args) -> ScanResult:
        self.cancel_token.reset()
        started = time.monotonic()
        try:
            result = operation(*args)
        except ScanCancelledError:
            self.progress.enter(ScanPhase.CANCELLED)
            logging.info("Scan cancelled; partial results discarded")
            raise
        except DuplicateFinderError as e:
            self.progress.enter(ScanPhase.ERROR)
            logging.error(f"Scan failed: {e}")
            raise

        self.stats = ScanStats(
            total_assets_scanned=result.total_assets_scanned,
            duplicates_found=result.duplicates_found,
            duplicate_groups=len(result.groups),
            total_size=sum(g.total_size for g in result.groups),
            scan_duration=time.monotonic() - started,
        )
        self.progress.enter(ScanPhase.COMPLETE)
        logging.info(
            f"Scan complete: {self.stats.duplicate_groups} groups, "
            f"{self.stats.duplicates_found} duplicates, {self.stats.scan_duration:.1f}s")
        return result

    def _full_scan(self) -> ScanResult:
        self.fingerprints.clear()

        self.progress.enter(ScanPhase.GROUPING)
        assets = self._enumerate(AssetFilter.all())
        logging.info(f"Full scan of {len(assets)} assets")
        buckets = self.grouper.candidate_buckets(assets)

        self.progress.enter(ScanPhase.COMPARING)
        groups = self._compare_buckets(buckets)

        self.cancel_token.raise_if_cancelled()
        self.progress.enter(ScanPhase.MERGING)
        groups = merge_groups(groups)

        return ScanResult(
            scan_date=datetime.now(),
            groups=tuple(sorted(groups, key=lambda g: g.id)),
            total_assets_scanned=len(assets),
            last_asset_date=_newest_date(assets),
        )

    def _delta_scan(self, previous: ScanResult) -> ScanResult:
        self.progress.enter(ScanPhase.PRUNING)
        existing = self.pruner.prune(previous.groups)

        self.progress.enter(ScanPhase.GROUPING_NEW)
        known = {asset_id for g in existing for asset_id in g.asset_ids}
        new_assets = [a for a in self._enumerate(AssetFilter.newer_than(previous.last_asset_date))
                      if a.identifier not in known]

        if not new_assets:
            logging.info("No new assets since last scan")
            return ScanResult(
                scan_date=datetime.now(),
                groups=tuple(existing),
                total_assets_scanned=previous.total_assets_scanned,
                last_asset_date=previous.last_asset_date,
            )

        logging.info(f"Delta scan of {len(new_assets)} new assets against {len(existing)} groups")
        buckets = self.grouper.candidate_buckets(new_assets)

        self.progress.enter(ScanPhase.COMPARING_NEW)
        new_groups = self._compare_buckets(buckets)

        self.progress.enter(ScanPhase.COMPARING_AGAINST_EXISTING)
        existing = self._match_against_existing(new_assets, existing)

        self.cancel_token.raise_if_cancelled()
        self.progress.enter(ScanPhase.MERGING)
        groups = merge_groups(existing + new_groups)

        return ScanResult(
            scan_date=datetime.now(),
            groups=tuple(sorted(groups, key=lambda g: g.id)),
            total_assets_scanned=previous.total_assets_scanned + len(new_assets),
            last_asset_date=_newest_date(new_assets, previous.last_asset_date),
        )

    def _refresh(self, current: ScanResult) -> ScanResult:
        self.progress.enter(ScanPhase.PRUNING)
        groups = self.pruner.prune(current.groups)
        return current.with_groups(groups)

    def _delete_and_reconcile(self, doomed: Set[str], current: ScanResult) -> ScanResult:
        groups = delete_and_merge_metadata(self.catalog, current.groups, doomed)
        for group in groups:
            if group.asset_ids & doomed:
                for asset_id in group.asset_ids:
                    self.fingerprints.invalidate(asset_id)

        self.progress.enter(ScanPhase.PRUNING)
        return current.with_groups(self.pruner.prune(groups))

    def _enumerate(self, asset_filter: AssetFilter) -> List[AssetRecord]:
        try:
            return list(self.catalog.enumerate_assets(asset_filter))
        except OSError as e:
            raise CatalogAccessError(f"Could not enumerate catalog: {e}") from e

    def _compare_buckets(self, buckets: Dict[str, List[AssetRecord]]) -> List[DuplicateGroup]:
        """
        Compares every bucket on the worker pool.

        Results are gathered by set union as they complete. Cancellation is
        checked between buckets; running buckets finish but are discarded.
        """
        self.cancel_token.raise_if_cancelled()
        groups: List[DuplicateGroup] = []
        if not buckets:
            return groups

        total = len(buckets)
        done = 0
        with ThreadPoolExecutor(max_workers=self.settings.max_workers) as executor:
            future_to_bucket = {
                executor.submit(self.comparator.compare_bucket, members): key
                for key, members in buckets.items()
            }

            for future in as_completed(future_to_bucket):
                key = future_to_bucket[future]
                try:
                    clusters = future.result()
                    groups.extend(self.assembler.assemble_clusters(clusters))
                except CatalogAccessError:
                    self._cancel_pending(future_to_bucket)
                    raise
                except Exception as e:
                    logging.error(f"Failed to compare bucket {key}: {e}")

                done += 1
                self.progress.update(done / total)
                if self.cancel_token.cancelled:
                    self._cancel_pending(future_to_bucket)
                    raise ScanCancelledError("Scan cancelled between buckets")

        logging.info(f"Found {len(groups)} groups in {total} buckets")
        return groups

    @staticmethod
    def _cancel_pending(futures):
        for future in futures:
            future.cancel()

    def _match_against_existing(self, new_assets: List[AssetRecord],
                                groups: List[DuplicateGroup]) -> List[DuplicateGroup]:
        """
        Appends each new asset to the existing group it matches best.

        Only groups with a member in the asset's bucket are candidates. Each
        asset joins at most one group; returns new group objects, never
        mutating the input.
        """
        updated = list(groups)
        index: Dict[str, List[int]] = {}
        for position, group in enumerate(updated):
            keys = {self.grouper.bucket_key(item.asset) for item in group.items}
            for key in keys:
                index.setdefault(key, []).append(position)

        joined = 0
        for count, asset in enumerate(new_assets, start=1):
            self.cancel_token.raise_if_cancelled()
            if asset.media_kind not in COMPARABLE_KINDS:
                continue

            best_position, best_match = None, None
            for position in index.get(self.grouper.bucket_key(asset), []):
                match = self.comparator.match_against_group(asset, updated[position])
                if match is not None and (best_match is None or rank_match(match) > rank_match(best_match)):
                    best_position, best_match = position, match

            if best_match is not None:
                group = updated[best_position]
                item = DuplicateItem.from_asset(asset, self.fingerprints.get_or_compute(asset))
                both_exact = (group.similarity_type == SimilarityType.EXACT
                              and best_match.similarity_type == SimilarityType.EXACT)
                updated[best_position] = DuplicateGroup.create(
                    group.items + (item,),
                    SimilarityType.EXACT if both_exact else SimilarityType.SIMILAR,
                    min(group.match_confidence, best_match.confidence),
                )
                joined += 1

            self.progress.update(count / len(new_assets))

        logging.info(f"{joined} new assets joined existing groups")
        return updated
