"""
Configuration constants for the duplicate finder.

Module-level constants are the defaults; `ScanSettings` bundles the tunable
ones so a scan session can override them without touching this module.
"""
from dataclasses import dataclass
from typing import Tuple

from .exceptions import ConfigurationError

# --- File Type Definitions ---
IMAGE_EXTS = {'.jpg', '.jpeg', '.jpe', '.png', '.gif', '.heic', '.heif',
              '.tif', '.tiff', '.webp', '.bmp'}
VIDEO_EXTS = {'.mp4', '.mov', '.m4v', '.avi', '.mts', '.m2ts', '.3gp', '.mpg', '.mpeg', '.mkv'}
AUDIO_EXTS = {'.mp3', '.m4a', '.aac', '.wav', '.flac'}

# Extension to media kind mapping (values match MediaKind)
EXT_TO_KIND = {}
for ext in IMAGE_EXTS: EXT_TO_KIND[ext] = 'image'
for ext in VIDEO_EXTS: EXT_TO_KIND[ext] = 'video'
for ext in AUDIO_EXTS: EXT_TO_KIND[ext] = 'audio'

# --- Metadata Parsing ---
DATE_TAGS = [
    'EXIF DateTimeOriginal',
    'EXIF DateTimeDigitized',
    'Image DateTime',
]

# --- Content Hashing ---
# Files smaller than this are hashed fully. Larger ones get Sparse Hash first.
SPARSE_HASH_THRESHOLD = 5 * 1024 * 1024  # 5 MB
HASH_CHUNK_SIZE = 64 * 1024  # 64 KB chunks for reading

# --- Perceptual Hashing ---
HASH_GRID_SIZE = 16          # grayscale grid fed to the codec
HASH_SIZE = 8                # 8x8 bits = 64-bit hashes
HASH_BITS = HASH_SIZE * HASH_SIZE
THUMBNAIL_MAX_DIMENSION = 128
VIDEO_FRAME_POSITION = 0.1   # representative frame at 10% of the duration

# --- Candidate Grouping ---
BUCKET_STRATEGY_COARSE = 'coarse'   # dimensions + aspect/duration
BUCKET_STRATEGY_QUICK = 'quick'     # dimensions + byte-size range/duration
BUCKET_STRATEGIES = (BUCKET_STRATEGY_COARSE, BUCKET_STRATEGY_QUICK)
ASPECT_BUCKET_FACTOR = 10
SIZE_BUCKET_BYTES = 100 * 1024

# --- Similarity Thresholds ---
HASH_WEIGHTS = (0.4, 0.4, 0.2)   # pHash, dHash, aHash
EXACT_HASH_DISTANCE = 0.05
SIMILAR_HASH_DISTANCE = 0.15
VIDEO_SIMILAR_HASH_DISTANCE = 0.20
EXACT_SIZE_TOLERANCE = 0.01
EXACT_MIN_CONFIDENCE = 0.85
DEGRADED_CONFIDENCE = 0.85
LOCATION_MATCH_METERS = 100.0
LOCATION_REFERENCE_METERS = 1000.0
LOCATION_BLEND = 0.9
DEVICE_MISMATCH_CONFIDENCE_CAP = 0.9

VIDEO_EXACT_DURATION_SECONDS = 0.1
VIDEO_EXACT_DURATION_RATIO = 0.001
VIDEO_SIMILAR_DURATION_SECONDS = 0.5
VIDEO_SIMILAR_DURATION_RATIO = 0.01
VIDEO_EXACT_LOCATION_CONFIDENCE = 0.9
VIDEO_EXACT_BASE_CONFIDENCE = 0.8
VIDEO_CONFIDENCE_WEIGHTS = (0.4, 0.4, 0.2)   # duration, visual, location

# --- Scan Execution ---
MAX_WORKERS = 8
EXISTENCE_BATCH_SIZE = 500
GROUP_ID_SEPARATOR = '|'

# --- Group Analysis ---
MULTIPLE_DATES_SECONDS = 86400
DATE_MISMATCH_SECONDS = 3600
SIZE_MISMATCH_RATIO = 0.1


@dataclass(frozen=True)
class ScanSettings:
    """
    Tunables for one scan session.

    The magnitudes were chosen empirically and are not known to be optimal;
    calibrate them against a labelled set before trusting tighter values.
    """
    hash_weights: Tuple[float, float, float] = HASH_WEIGHTS
    exact_hash_distance: float = EXACT_HASH_DISTANCE
    similar_hash_distance: float = SIMILAR_HASH_DISTANCE
    video_similar_hash_distance: float = VIDEO_SIMILAR_HASH_DISTANCE
    exact_size_tolerance: float = EXACT_SIZE_TOLERANCE
    exact_min_confidence: float = EXACT_MIN_CONFIDENCE
    degraded_confidence: float = DEGRADED_CONFIDENCE
    location_match_meters: float = LOCATION_MATCH_METERS
    location_reference_meters: float = LOCATION_REFERENCE_METERS
    location_blend: float = LOCATION_BLEND
    device_mismatch_confidence_cap: float = DEVICE_MISMATCH_CONFIDENCE_CAP

    video_exact_duration_seconds: float = VIDEO_EXACT_DURATION_SECONDS
    video_exact_duration_ratio: float = VIDEO_EXACT_DURATION_RATIO
    video_similar_duration_seconds: float = VIDEO_SIMILAR_DURATION_SECONDS
    video_similar_duration_ratio: float = VIDEO_SIMILAR_DURATION_RATIO
    video_exact_location_confidence: float = VIDEO_EXACT_LOCATION_CONFIDENCE
    video_exact_base_confidence: float = VIDEO_EXACT_BASE_CONFIDENCE
    video_confidence_weights: Tuple[float, float, float] = VIDEO_CONFIDENCE_WEIGHTS
    video_frame_position: float = VIDEO_FRAME_POSITION

    bucket_strategy: str = BUCKET_STRATEGY_COARSE
    compare_all_group_members: bool = True
    max_workers: int = MAX_WORKERS
    hash_grid_size: int = HASH_GRID_SIZE
    thumbnail_max_dimension: int = THUMBNAIL_MAX_DIMENSION
    existence_batch_size: int = EXISTENCE_BATCH_SIZE

    def __post_init__(self):
        if abs(sum(self.hash_weights) - 1.0) > 1e-9:
            raise ConfigurationError(f"hash_weights must sum to 1, got {self.hash_weights}")
        if abs(sum(self.video_confidence_weights) - 1.0) > 1e-9:
            raise ConfigurationError(
                f"video_confidence_weights must sum to 1, got {self.video_confidence_weights}")
        if not 0 < self.exact_hash_distance < self.similar_hash_distance <= 1:
            raise ConfigurationError(
                "Expected 0 < exact_hash_distance < similar_hash_distance <= 1, got "
                f"{self.exact_hash_distance} / {self.similar_hash_distance}")
        if not 0 < self.video_similar_hash_distance <= 1:
            raise ConfigurationError(
                f"video_similar_hash_distance out of range: {self.video_similar_hash_distance}")
        if self.bucket_strategy not in BUCKET_STRATEGIES:
            raise ConfigurationError(f"Unknown bucket strategy: {self.bucket_strategy!r}")
        if self.max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1")
        if self.existence_batch_size < 1:
            raise ConfigurationError("existence_batch_size must be at least 1")
        if not 0 <= self.video_frame_position <= 1:
            raise ConfigurationError("video_frame_position must be within [0, 1]")
