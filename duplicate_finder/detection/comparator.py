"""
Pairwise similarity classification.

Every classification depends only on the two assets being compared (their
metadata and fingerprints), never on scan order, so buckets can be compared
concurrently and in any order.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ..config import ScanSettings
from ..hashing.codec import hamming_distance
from ..hashing.fingerprints import FingerprintCache
from ..models import (AssetRecord, DuplicateGroup, Fingerprint, MediaKind,
                      PerceptualHash, SimilarityType)
from .. import config


@dataclass(frozen=True)
class Match:
    similarity_type: SimilarityType
    confidence: float


@dataclass
class MatchCluster:
    """A reference asset plus every bucket-mate it matched."""
    members: List[Tuple[AssetRecord, Fingerprint]]
    similarity_type: SimilarityType
    confidence: float


def weighted_hash_distance(h1: PerceptualHash, h2: PerceptualHash,
                           weights: Tuple[float, float, float] = config.HASH_WEIGHTS) -> float:
    """Normalized distance in [0, 1]: weights applied to pHash, dHash, aHash."""
    wp, wd, wa = weights
    return (wp * hamming_distance(h1.p, h2.p)
            + wd * hamming_distance(h1.d, h2.d)
            + wa * hamming_distance(h1.a, h2.a)) / config.HASH_BITS


def relative_size_difference(size_a: int, size_b: int) -> float:
    largest = max(size_a, size_b)
    if largest <= 0:
        return 0.0
    return abs(size_a - size_b) / largest


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class SimilarityComparator:
    def __init__(self, fingerprints: FingerprintCache, settings: Optional[ScanSettings] = None):
        self.fingerprints = fingerprints
        self.settings = settings or ScanSettings()

    # --- Public API ---

    def compare(self, a: AssetRecord, b: AssetRecord) -> Optional[Match]:
        """Classifies a pair, fetching fingerprints through the cache."""
        if a.media_kind != b.media_kind:
            return None
        if a.media_kind not in (MediaKind.IMAGE, MediaKind.VIDEO):
            return None
        fa = self.fingerprints.get_or_compute(a)
        fb = self.fingerprints.get_or_compute(b)
        return self.compare_fingerprints(a, fa, b, fb)

    def compare_fingerprints(self, a: AssetRecord, fa: Fingerprint,
                             b: AssetRecord, fb: Fingerprint) -> Optional[Match]:
        if a.media_kind != b.media_kind:
            return None
        if a.media_kind == MediaKind.IMAGE:
            return self.compare_images(a, fa, b, fb)
        if a.media_kind == MediaKind.VIDEO:
            return self.compare_videos(a, fa, b, fb)
        return None

    def compare_bucket(self, assets: Sequence[AssetRecord]) -> List[MatchCluster]:
        """
        Reference-vs-rest comparison over one bucket.

        The first asset (catalog order) is the reference; everything it matches
        forms one cluster. Unmatched assets are compared again with the next
        of them as reference until fewer than two remain.
        """
        clusters = []
        remaining = list(assets)

        while len(remaining) > 1:
            reference = remaining[0]
            ref_fp = self.fingerprints.get_or_compute(reference)
            matched: List[Tuple[AssetRecord, Fingerprint, Match]] = []
            leftovers = []

            for candidate in remaining[1:]:
                cand_fp = self.fingerprints.get_or_compute(candidate)
                match = self.compare_fingerprints(reference, ref_fp, candidate, cand_fp)
                if match is None:
                    leftovers.append(candidate)
                else:
                    matched.append((candidate, cand_fp, match))

            if matched:
                all_exact = all(m.similarity_type == SimilarityType.EXACT for _, _, m in matched)
                clusters.append(MatchCluster(
                    members=[(reference, ref_fp)] + [(asset, fp) for asset, fp, _ in matched],
                    similarity_type=SimilarityType.EXACT if all_exact else SimilarityType.SIMILAR,
                    confidence=min(m.confidence for _, _, m in matched),
                ))

            remaining = leftovers

        return clusters

    def match_against_group(self, asset: AssetRecord, group: DuplicateGroup) -> Optional[Match]:
        """
        Best match of one asset against an existing group.

        Compares against every member, or only the representative when
        `compare_all_group_members` is off.
        """
        if group.media_kind != asset.media_kind:
            return None

        members = group.items if self.settings.compare_all_group_members else group.items[:1]
        best: Optional[Match] = None
        for item in members:
            if item.asset_id == asset.identifier:
                continue
            match = self.compare(item.asset, asset)
            if match is None:
                continue
            if best is None or rank_match(match) > rank_match(best):
                best = match
        return best

    # --- Images ---

    def compare_images(self, a: AssetRecord, fa: Fingerprint,
                       b: AssetRecord, fb: Fingerprint) -> Optional[Match]:
        s = self.settings
        size_close = relative_size_difference(fa.byte_size, fb.byte_size) <= s.exact_size_tolerance

        distance = self._visual_distance(fa, fb)
        if distance is None:
            # Hash missing on one side: size-only comparison, never Exact
            if not size_close:
                return None
            logging.debug(f"Degraded comparison for {a.identifier} / {b.identifier}")
            return self._apply_context(a, b, SimilarityType.SIMILAR, s.degraded_confidence)

        if distance < s.exact_hash_distance and size_close:
            similarity, confidence = SimilarityType.EXACT, max(s.exact_min_confidence, 1.0 - distance)
        elif distance < s.similar_hash_distance:
            similarity, confidence = SimilarityType.SIMILAR, 1.0 - distance / s.similar_hash_distance
        else:
            return None

        return self._apply_context(a, b, similarity, confidence)

    # --- Videos ---

    def compare_videos(self, a: AssetRecord, fa: Fingerprint,
                       b: AssetRecord, fb: Fingerprint) -> Optional[Match]:
        s = self.settings
        duration_diff = abs(a.duration - b.duration)
        max_duration = max(a.duration, b.duration)
        exact_tolerance = min(s.video_exact_duration_seconds, max_duration * s.video_exact_duration_ratio)
        similar_tolerance = min(s.video_similar_duration_seconds, max_duration * s.video_similar_duration_ratio)

        # Duration gate first: it is free, frame hashing is not
        if duration_diff > similar_tolerance:
            return None

        distance = self._visual_distance(fa, fb)
        if distance is None:
            if relative_size_difference(fa.byte_size, fb.byte_size) > s.exact_size_tolerance:
                return None
            logging.debug(f"Degraded comparison for {a.identifier} / {b.identifier}")
            return self._cap_device(a, b, Match(SimilarityType.SIMILAR, s.degraded_confidence))

        location_confidence, location_agrees = self._location_signal(a, b)
        dimensions_match = (a.pixel_width, a.pixel_height) == (b.pixel_width, b.pixel_height)

        if (duration_diff <= exact_tolerance and dimensions_match
                and distance < s.exact_hash_distance
                and location_agrees and location_confidence > s.video_exact_location_confidence):
            confidence = s.video_exact_base_confidence + (1.0 - s.video_exact_base_confidence) * location_confidence
            return self._cap_device(a, b, Match(SimilarityType.EXACT, _clamp(confidence)))

        if distance < s.video_similar_hash_distance:
            duration_confidence = 1.0 - duration_diff / similar_tolerance if similar_tolerance > 0 else 1.0
            visual_confidence = 1.0 - distance / s.video_similar_hash_distance
            w_duration, w_visual, w_location = s.video_confidence_weights
            confidence = (duration_confidence * w_duration
                          + visual_confidence * w_visual
                          + location_confidence * w_location)
            return self._cap_device(a, b, Match(SimilarityType.SIMILAR, _clamp(confidence)))

        return None

    # --- Signals ---

    def _visual_distance(self, fa: Fingerprint, fb: Fingerprint) -> Optional[float]:
        if fa.content_hash and fa.content_hash == fb.content_hash:
            return 0.0
        if fa.perceptual_hash is None or fb.perceptual_hash is None:
            return None
        return weighted_hash_distance(fa.perceptual_hash, fb.perceptual_hash, self.settings.hash_weights)

    def _location_signal(self, a: AssetRecord, b: AssetRecord) -> Tuple[float, bool]:
        """
        Returns (location_confidence, agrees).

        Both absent or both within the match radius agree with full confidence.
        A one-sided location disagrees without a distance to penalize.
        """
        s = self.settings
        if a.location is None and b.location is None:
            return 1.0, True
        if a.location is None or b.location is None:
            return 1.0, False
        meters = a.location.distance_to(b.location)
        if meters <= s.location_match_meters:
            return 1.0, True
        return min(1.0, s.location_reference_meters / (meters + s.location_reference_meters)), False

    def _apply_context(self, a: AssetRecord, b: AssetRecord,
                       similarity: SimilarityType, confidence: float) -> Match:
        """Location downgrade/penalty, then the device-model cap."""
        location_confidence, agrees = self._location_signal(a, b)
        if not agrees:
            similarity = SimilarityType.SIMILAR
            blend = self.settings.location_blend
            confidence = min(confidence, blend * confidence + (1.0 - blend) * location_confidence)
        return self._cap_device(a, b, Match(similarity, _clamp(confidence)))

    def _cap_device(self, a: AssetRecord, b: AssetRecord, match: Match) -> Match:
        if a.device_model and b.device_model and a.device_model != b.device_model:
            capped = min(match.confidence, self.settings.device_mismatch_confidence_cap)
            return Match(match.similarity_type, capped)
        return match


def rank_match(match: Match) -> Tuple[int, float]:
    return (1 if match.similarity_type == SimilarityType.EXACT else 0, match.confidence)
