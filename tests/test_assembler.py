import itertools

import pytest

from duplicate_finder.detection.assembler import GroupAssembler
from duplicate_finder.detection.comparator import MatchCluster
from duplicate_finder.exceptions import GroupInvariantError
from duplicate_finder.models import DuplicateGroup, DuplicateItem, SimilarityType

from conftest import fingerprint


def test_group_id_is_permutation_invariant(make_asset):
    assets = [make_asset(n) for n in ("B", "A", "C")]
    assembler = GroupAssembler()
    ids = {
        assembler.assemble([(a, fingerprint()) for a in order], SimilarityType.EXACT, 1.0).id
        for order in itertools.permutations(assets)
    }
    assert ids == {"A|B|C"}


def test_single_item_is_discarded(make_asset):
    assembler = GroupAssembler()
    asset = make_asset("solo")
    assert assembler.assemble([(asset, None)], SimilarityType.EXACT, 1.0) is None
    # Same asset twice is still one item
    assert assembler.assemble([(asset, None), (asset, None)], SimilarityType.EXACT, 1.0) is None


def test_confidence_is_clamped(make_asset):
    group = GroupAssembler().assemble([(make_asset("a"), None), (make_asset("b"), None)],
                                      SimilarityType.SIMILAR, 1.2)
    assert group.match_confidence == 1.0


def test_assemble_clusters(make_asset):
    a, b, c = (make_asset(n) for n in "abc")
    clusters = [
        MatchCluster([(a, fingerprint()), (b, fingerprint())], SimilarityType.EXACT, 0.95),
        MatchCluster([(c, fingerprint())], SimilarityType.SIMILAR, 0.5),
    ]
    groups = GroupAssembler().assemble_clusters(clusters)
    assert len(groups) == 1
    assert groups[0].id == "a|b"
    assert groups[0].items[0].fingerprint is not None
    assert groups[0].match_confidence == 0.95


def test_items_get_fresh_ids(make_asset):
    asset = make_asset("a")
    first, second = DuplicateItem.from_asset(asset), DuplicateItem.from_asset(asset)
    assert first.item_id != second.item_id
    assert first.asset_id == second.asset_id == "a"


def test_group_invariants(make_asset):
    a, b = DuplicateItem.from_asset(make_asset("a")), DuplicateItem.from_asset(make_asset("b"))

    with pytest.raises(GroupInvariantError):
        DuplicateGroup.create([a], SimilarityType.EXACT)
    with pytest.raises(AssertionError):
        DuplicateGroup(id="wrong", items=(a, b), similarity_type=SimilarityType.EXACT, match_confidence=1.0)
    with pytest.raises(GroupInvariantError):
        DuplicateGroup.create([a, b], SimilarityType.EXACT, match_confidence=-0.1)
    with pytest.raises(GroupInvariantError):
        DuplicateGroup.create([a, DuplicateItem.from_asset(a.asset)], SimilarityType.EXACT)
