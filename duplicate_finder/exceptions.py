"""
Custom exception hierarchy for the duplicate finder.

Catalog-level failures abort a scan; per-asset failures are recovered
where the fingerprint is computed.
"""


class DuplicateFinderError(Exception):
    """Base exception for all duplicate finder errors."""
    pass


class ConfigurationError(DuplicateFinderError):
    """Raised when scan settings are inconsistent."""
    pass


class CatalogAccessError(DuplicateFinderError):
    """Raised when the media catalog cannot be enumerated or read."""
    pass


class HashComputationError(DuplicateFinderError):
    """Raised when a perceptual hash cannot be computed for one asset."""
    pass


class ThumbnailDecodeError(HashComputationError):
    """Raised when a thumbnail or video frame cannot be decoded."""
    pass


class ScanCancelledError(DuplicateFinderError):
    """Raised when a scan is cancelled between buckets."""
    pass


class ScanResultCorruptError(DuplicateFinderError):
    """Raised when a persisted scan result cannot be decoded."""
    pass


class GroupInvariantError(DuplicateFinderError, AssertionError):
    """Raised when a duplicate group would violate its invariants (programming error)."""
    pass


class FileOperationError(DuplicateFinderError):
    """Raised when deleting or updating a catalog file fails."""
    pass
