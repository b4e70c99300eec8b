import sqlite3
from datetime import datetime, timedelta

import numpy as np
import pytest
from PIL import Image

from duplicate_finder.catalog.memory import InMemoryCatalog
from duplicate_finder.database.ops import ScanResultStore
from duplicate_finder.database.schema import init_schema
from duplicate_finder.hashing.fingerprints import FingerprintCache
from duplicate_finder.models import AssetRecord, Fingerprint, MediaKind, PerceptualHash

BASE_DATE = datetime(2024, 1, 1, 12, 0, 0)


@pytest.fixture
def conn():
    """Returns an in-memory SQLite connection with the schema initialized."""
    c = sqlite3.connect(":memory:")
    c.execute("PRAGMA foreign_keys=ON;")
    init_schema(c)
    try:
        yield c
    finally:
        c.close()


@pytest.fixture
def store(conn):
    return ScanResultStore(conn)


@pytest.fixture
def catalog():
    return InMemoryCatalog()


@pytest.fixture
def cache(catalog):
    return FingerprintCache(catalog)


@pytest.fixture
def make_asset():
    """Factory for AssetRecords; creation dates advance one minute per call."""
    counter = {"n": 0}

    def _make(identifier, kind=MediaKind.IMAGE, width=1080, height=1920, duration=0.0,
              byte_size=500_000, creation_date=None, location=None, device_make=None, device_model=None):
        counter["n"] += 1
        return AssetRecord(
            identifier=identifier,
            media_kind=kind,
            pixel_width=width,
            pixel_height=height,
            duration=duration,
            byte_size=byte_size,
            creation_date=creation_date or BASE_DATE + timedelta(minutes=counter["n"]),
            location=location,
            device_make=device_make,
            device_model=device_model,
        )

    return _make


def fingerprint(byte_size=500_000, p=0, d=0, a=0, kind=MediaKind.IMAGE, content_hash=None, hashed=True):
    return Fingerprint(
        byte_size=byte_size,
        media_kind=kind,
        content_hash=content_hash,
        perceptual_hash=PerceptualHash(p, d, a) if hashed else None,
    )


def noise_image(seed, size=64):
    """Seeded random RGB image; different seeds give unrelated hashes."""
    rng = np.random.default_rng(seed)
    return Image.fromarray(rng.integers(0, 256, size=(size, size, 3), dtype=np.uint8))
