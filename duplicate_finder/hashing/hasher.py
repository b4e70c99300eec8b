import hashlib
import logging
import os
import threading
from pathlib import Path
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

from .. import config

@dataclass
class HashResult:
    value: str
    is_sparse: bool  # True if we only read partial file (Identity confirmed)

class ContentHasher:
    """
    Cryptographic content digests for the filesystem catalog.

    Large files are identified by a sparse digest unless a peer of the same
    size shares it, in which case the full SHA-256 is used. Peers are passed
    in by the caller, so the digest of a path depends only on its bytes and
    those of its peers, never on the order in which files were hashed.
    Digests are memoized per path and invalidated when size or mtime change.
    """
    def __init__(self):
        self._sparse: Dict[Path, Tuple[Tuple[int, int], str]] = {}
        self._full: Dict[Path, Tuple[Tuple[int, int], str]] = {}
        self._lock = threading.Lock()

    def compute_hash(self, path: Path, peers: Iterable[Path] = ()) -> Optional[HashResult]:
        """
        Computes a fingerprint for the file.

        Strategy:
        1. If file < SPARSE_HASH_THRESHOLD:
           -> Full Read (SHA-256).

        2. If file >= SPARSE_HASH_THRESHOLD:
           -> Compute Sparse Hash (Header + Middle + Footer + Size).
           -> If no same-size peer shares it: Return Sparse Hash (Fast!).
           -> If a peer shares it: Full Read (SHA-256) to tell a true
              duplicate from a sparse collision.
        """
        try:
            st = path.stat()
        except FileNotFoundError:
            # File might have been moved/deleted during scan
            return None

        # 1. Small files: Just read them. Overhead of seeking isn't worth it.
        if st.st_size < config.SPARSE_HASH_THRESHOLD:
            return HashResult(self._memoized(self._full, path, st, self._full_sha256), is_sparse=False)

        # 2. Large files: Try Sparse Hash first.
        sparse_h = self._memoized(self._sparse, path, st, self._sparse_hash)

        for peer in peers:
            if peer == path:
                continue
            try:
                peer_st = peer.stat()
            except FileNotFoundError:
                continue
            if peer_st.st_size != st.st_size:
                continue
            if self._memoized(self._sparse, peer, peer_st, self._sparse_hash) == sparse_h:
                logging.debug(f"Sparse digest of {path} shared with {peer}; reading in full")
                return HashResult(self._memoized(self._full, path, st, self._full_sha256), is_sparse=False)

        return HashResult(sparse_h, is_sparse=True)

    def _memoized(self, cache: Dict[Path, Tuple[Tuple[int, int], str]], path: Path,
                  st: os.stat_result, compute: Callable[[Path, int], str]) -> str:
        key = (st.st_size, st.st_mtime_ns)
        with self._lock:
            hit = cache.get(path)
        if hit is not None and hit[0] == key:
            return hit[1]

        value = compute(path, st.st_size)
        with self._lock:
            cache[path] = (key, value)
        return value

    def _full_sha256(self, path: Path, file_size: int) -> str:
        """Reads entire file. High I/O cost."""
        h = hashlib.sha256()
        with open(path, 'rb') as f:
            while chunk := f.read(config.HASH_CHUNK_SIZE):
                h.update(chunk)
        return h.hexdigest()

    def _sparse_hash(self, path: Path, file_size: int) -> str:
        """
        Reads Header (4KB), Middle (4KB), Footer (4KB) and mixes in file size.
        Prefixes with 's-' to distinguish from full hashes.
        """
        chunk_size = 4096
        h = hashlib.sha256()
        h.update(str(file_size).encode('ascii'))

        with open(path, 'rb') as f:
            h.update(f.read(chunk_size))

            if file_size > chunk_size * 3:
                f.seek(file_size // 2)
                h.update(f.read(chunk_size))

            if file_size > chunk_size * 2:
                try:
                    f.seek(-chunk_size, 2)
                    h.update(f.read(chunk_size))
                except OSError:
                    logging.debug(f"Could not read footer of {path}")

        return f"s-{h.hexdigest()}"
