from datetime import datetime

import pytest

from duplicate_finder.catalog.memory import InMemoryCatalog
from duplicate_finder.config import ScanSettings
from duplicate_finder.exceptions import CatalogAccessError, FileOperationError, ScanCancelledError
from duplicate_finder.models import (DuplicateGroup, DuplicateItem, GeoLocation, MediaKind,
                                     SimilarityType)
from duplicate_finder.scanning.coordinator import ScanCoordinator, merge_groups
from duplicate_finder.scanning.progress import ScanPhase

from conftest import noise_image


def add(catalog, asset, seed):
    catalog.add(asset, thumbnail=noise_image(seed))
    return asset


@pytest.fixture
def library(catalog, make_asset):
    """a/a-copy are identical, b is unrelated, c is a different size."""
    add(catalog, make_asset("a"), 1)
    add(catalog, make_asset("a-copy"), 1)
    add(catalog, make_asset("b"), 2)
    add(catalog, make_asset("c", width=640, height=480), 3)
    return catalog


def group_of(*assets, similarity=SimilarityType.EXACT, confidence=1.0):
    return DuplicateGroup.create([DuplicateItem.from_asset(a) for a in assets], similarity, confidence)


def test_full_scan_finds_exact_pair(library):
    coordinator = ScanCoordinator(library, ScanSettings(max_workers=2))
    result = coordinator.run_full_scan()

    assert [g.id for g in result.groups] == ["a|a-copy"]
    group = result.groups[0]
    assert group.similarity_type == SimilarityType.EXACT
    assert group.match_confidence >= 0.85
    assert result.total_assets_scanned == 4
    assert result.last_asset_date == library.get("c").creation_date
    assert coordinator.state == ScanPhase.COMPLETE
    assert coordinator.stats.duplicate_groups == 1
    assert coordinator.stats.duplicates_found == 2


def test_full_scan_orders_groups_by_id(catalog, make_asset):
    for name, seed in (("z1", 5), ("z2", 5), ("m1", 6), ("m2", 6)):
        add(catalog, make_asset(name), seed)
    result = ScanCoordinator(catalog).run_full_scan()
    assert [g.id for g in result.groups] == ["m1|m2", "z1|z2"]
    assert all(len(g.items) >= 2 for g in result.groups)


def test_progress_reports_phases(library):
    events = []
    ScanCoordinator(library, progress_callback=lambda phase, fraction: events.append((phase, fraction))).run_full_scan()

    phases = [p for p, _ in events]
    assert phases[0] == ScanPhase.GROUPING
    assert ScanPhase.COMPARING in phases
    assert events[-1] == (ScanPhase.COMPLETE, 1.0)
    assert all(0.0 <= f <= 1.0 for _, f in events)


def test_new_asset_alone_adds_no_group(library, make_asset):
    coordinator = ScanCoordinator(library)
    first = coordinator.run_full_scan()
    add(library, make_asset("lonely", width=300, height=300), 9)

    second = coordinator.run_delta_scan(first)

    assert [g.id for g in second.groups] == [g.id for g in first.groups]
    assert second.total_assets_scanned == first.total_assets_scanned + 1
    assert second.last_asset_date == library.get("lonely").creation_date


def test_delta_appends_to_existing_group(library, make_asset):
    coordinator = ScanCoordinator(library)
    first = coordinator.run_full_scan()
    add(library, make_asset("a-again"), 1)

    second = coordinator.run_delta_scan(first)

    assert [g.id for g in second.groups] == ["a|a-again|a-copy"]
    assert second.groups[0].similarity_type == SimilarityType.EXACT
    assert coordinator.state == ScanPhase.COMPLETE


def test_delta_groups_new_duplicates(library, make_asset):
    coordinator = ScanCoordinator(library)
    first = coordinator.run_full_scan()
    add(library, make_asset("n1", width=800, height=600), 11)
    add(library, make_asset("n2", width=800, height=600), 11)

    second = coordinator.run_delta_scan(first)
    assert [g.id for g in second.groups] == ["a|a-copy", "n1|n2"]


def test_delta_without_new_assets_is_idempotent(library):
    coordinator = ScanCoordinator(library)
    first = coordinator.run_full_scan()

    once = coordinator.run_delta_scan(first)
    twice = coordinator.run_delta_scan(once)

    assert once.groups == first.groups
    assert twice.groups == once.groups
    assert twice.last_asset_date == first.last_asset_date
    assert twice.total_assets_scanned == first.total_assets_scanned


def test_delta_without_previous_runs_full_scan(library):
    result = ScanCoordinator(library).run_delta_scan(None)
    assert [g.id for g in result.groups] == ["a|a-copy"]


def test_delta_prunes_deleted_assets(library, make_asset):
    coordinator = ScanCoordinator(library)
    first = coordinator.run_full_scan()
    library.remove("a-copy")
    add(library, make_asset("late", width=300, height=300), 12)

    assert coordinator.run_delta_scan(first).groups == ()


def test_count_new_assets(library, make_asset):
    coordinator = ScanCoordinator(library)
    assert coordinator.count_new_assets(None) == 4
    first = coordinator.run_full_scan()
    assert coordinator.count_new_assets(first) == 0
    add(library, make_asset("new"), 20)
    assert coordinator.count_new_assets(first) == 1


def test_merge_reaches_fixed_point(make_asset):
    a, b, c, d, e = (make_asset(n) for n in "abcde")
    g1 = group_of(a, b)
    g2 = group_of(b, c, similarity=SimilarityType.SIMILAR, confidence=0.6)
    g3 = group_of(d, e)
    g4 = group_of(c, d, confidence=0.9)

    merged = merge_groups([g1, g2, g3, g4])

    assert len(merged) == 1
    (group,) = merged
    assert group.id == "a|b|c|d|e"
    assert [i.asset_id for i in group.items] == ["a", "b", "c", "d", "e"]
    assert group.similarity_type == SimilarityType.SIMILAR
    assert group.match_confidence == 0.6


def test_merge_keeps_disjoint_groups(make_asset):
    a, b, c, d = (make_asset(n) for n in "abcd")
    g1, g2 = group_of(a, b), group_of(c, d)
    merged = merge_groups([g1, g2])
    assert merged[0] is g1 and merged[1] is g2
    ids = [asset for g in merged for asset in g.asset_ids]
    assert len(ids) == len(set(ids))


def test_refresh_is_idempotent_and_keeps_scan_date(library):
    coordinator = ScanCoordinator(library)
    result = coordinator.run_full_scan()

    once = coordinator.refresh(result)
    assert once == coordinator.refresh(once)
    assert once.scan_date == result.scan_date

    library.remove("a")
    pruned = coordinator.refresh(once)
    assert pruned.groups == ()
    assert coordinator.refresh(pruned) == pruned


def test_cancellation_discards_scan(catalog, make_asset):
    for i in range(6):
        add(catalog, make_asset(f"p{i}", width=100 + i, height=100), 30 + i)
        add(catalog, make_asset(f"q{i}", width=100 + i, height=100), 30 + i)

    coordinator = None

    def cancel_when_comparing(phase, fraction):
        if phase == ScanPhase.COMPARING:
            coordinator.cancel()

    coordinator = ScanCoordinator(catalog, ScanSettings(max_workers=1), progress_callback=cancel_when_comparing)
    with pytest.raises(ScanCancelledError):
        coordinator.run_full_scan()
    assert coordinator.state == ScanPhase.CANCELLED
    assert coordinator.stats is None


class BrokenCatalog(InMemoryCatalog):
    def enumerate_assets(self, asset_filter):
        raise CatalogAccessError("library unavailable")


def test_catalog_failure_enters_error_state():
    coordinator = ScanCoordinator(BrokenCatalog())
    with pytest.raises(CatalogAccessError):
        coordinator.run_full_scan()
    assert coordinator.state == ScanPhase.ERROR


class UnreadableSizeCatalog(InMemoryCatalog):
    def byte_size(self, asset_id):
        raise CatalogAccessError("size lookup failed")


def test_catalog_failure_inside_bucket_aborts(make_asset):
    catalog = UnreadableSizeCatalog()
    add(catalog, make_asset("x", byte_size=0), 1)
    add(catalog, make_asset("y", byte_size=0), 1)

    coordinator = ScanCoordinator(catalog)
    with pytest.raises(CatalogAccessError):
        coordinator.run_full_scan()
    assert coordinator.state == ScanPhase.ERROR


class ExplodingThumbnailCatalog(InMemoryCatalog):
    def decode_thumbnail(self, asset_id, max_dimension):
        if asset_id.startswith("bad"):
            raise RuntimeError("decoder crashed")
        return super().decode_thumbnail(asset_id, max_dimension)


def test_unexpected_bucket_failure_skips_bucket(make_asset):
    catalog = ExplodingThumbnailCatalog()
    add(catalog, make_asset("bad1", width=10, height=10), 1)
    add(catalog, make_asset("bad2", width=10, height=10), 1)
    add(catalog, make_asset("ok1"), 2)
    add(catalog, make_asset("ok2"), 2)

    coordinator = ScanCoordinator(catalog)
    result = coordinator.run_full_scan()
    assert [g.id for g in result.groups] == ["ok1|ok2"]
    assert coordinator.state == ScanPhase.COMPLETE


def test_videos_are_grouped(catalog, make_asset):
    for name in ("v1", "v2"):
        add(catalog, make_asset(name, kind=MediaKind.VIDEO, width=1920, height=1080, duration=30.0), 40)
    add(catalog, make_asset("v3", kind=MediaKind.VIDEO, width=1920, height=1080, duration=30.2), 40)

    result = ScanCoordinator(catalog).run_full_scan()
    assert [g.id for g in result.groups] == ["v1|v2|v3"]
    assert result.groups[0].similarity_type == SimilarityType.SIMILAR


def test_delete_and_reconcile_merges_metadata(catalog, make_asset):
    spot = GeoLocation(10.0, 20.0)
    keep = add(catalog, make_asset("keep", creation_date=datetime(2024, 5, 1)), 1)
    add(catalog, make_asset("drop", creation_date=datetime(2024, 1, 1), location=spot), 1)
    add(catalog, make_asset("other1"), 2)
    add(catalog, make_asset("other2"), 2)

    coordinator = ScanCoordinator(catalog)
    result = coordinator.run_full_scan()
    assert len(result.groups) == 2

    after = coordinator.delete_assets_and_reconcile(["drop"], result)

    assert catalog.get("drop") is None
    survivor = catalog.get("keep")
    assert survivor.creation_date == datetime(2024, 1, 1)
    assert survivor.location == spot
    assert keep.creation_date == datetime(2024, 5, 1)
    assert [g.id for g in after.groups] == ["other1|other2"]



def test_delete_and_reconcile_returns_patched_survivor(catalog, make_asset):
    spot = GeoLocation(48.0, 11.0)
    add(catalog, make_asset("keep", creation_date=datetime(2024, 1, 5)), 1)
    add(catalog, make_asset("old", creation_date=datetime(2024, 1, 1), location=spot), 1)
    add(catalog, make_asset("twin", creation_date=datetime(2024, 1, 9)), 1)

    coordinator = ScanCoordinator(catalog)
    result = coordinator.run_full_scan()
    assert [g.id for g in result.groups] == ["keep|old|twin"]

    after = coordinator.delete_assets_and_reconcile(["old"], result)

    (group,) = after.groups
    assert group.id == "keep|twin"
    survivor = next(item for item in group.items if item.asset_id == "keep")
    assert survivor.asset.creation_date == datetime(2024, 1, 1)
    assert survivor.asset.location == spot
    assert survivor.location_display == spot.display()
    assert after.scan_date == result.scan_date
    assert coordinator.state == ScanPhase.COMPLETE
    assert coordinator.stats.duplicate_groups == 1


class UndeletableCatalog(InMemoryCatalog):
    def delete_assets(self, asset_ids):
        raise FileOperationError("read-only volume")


def test_failed_delete_enters_error_state(make_asset):
    catalog = UndeletableCatalog()
    add(catalog, make_asset("x"), 1)
    add(catalog, make_asset("y"), 1)
    coordinator = ScanCoordinator(catalog)
    result = coordinator.run_full_scan()

    with pytest.raises(FileOperationError):
        coordinator.delete_assets_and_reconcile(["y"], result)
    assert coordinator.state == ScanPhase.ERROR


def test_cancellation_before_merge_discards_delta(library, make_asset):
    coordinator = ScanCoordinator(library)
    first = coordinator.run_full_scan()
    add(library, make_asset("a-again"), 1)

    phases = []

    def cancel_after_matching(phase, fraction):
        phases.append(phase)
        if phase == ScanPhase.COMPARING_AGAINST_EXISTING and fraction == 1.0:
            coordinator.cancel()

    coordinator.progress.callback = cancel_after_matching
    with pytest.raises(ScanCancelledError):
        coordinator.run_delta_scan(first)

    assert ScanPhase.MERGING not in phases
    assert coordinator.state == ScanPhase.CANCELLED
