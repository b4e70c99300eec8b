import logging
import os
import subprocess
import threading
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Set

import numpy as np
from PIL import Image

from .. import config
from ..exceptions import CatalogAccessError, FileOperationError, ThumbnailDecodeError
from ..hashing.hasher import ContentHasher
from ..models import AssetFilter, AssetRecord, MediaKind, MetadataPatch
from .base import AssetCatalog
from .metadata import MediaMetadata, MetadataExtractor

FFMPEG_TIMEOUT_SECONDS = 60


class FilesystemCatalog(AssetCatalog):
    """
    A directory tree exposed as a media catalog.

    Asset identifiers are POSIX paths relative to the root, so they stay
    stable across runs and sort the same way on every platform.
    """

    def __init__(self, root: Path, skip_dirs: Optional[Set[Path]] = None,
                 extractor: Optional[MetadataExtractor] = None,
                 hasher: Optional[ContentHasher] = None,
                 ffmpeg_path: str = "ffmpeg",
                 frame_position: float = config.VIDEO_FRAME_POSITION):
        self.root = Path(root)
        self.skip_dirs = {Path(d) for d in (skip_dirs or ())}
        self.extractor = extractor or MetadataExtractor()
        self.hasher = hasher or ContentHasher()
        self.ffmpeg_path = ffmpeg_path
        self.frame_position = frame_position
        self._records: Dict[str, AssetRecord] = {}
        self._lock = threading.Lock()

    # --- AssetCatalog ---

    def enumerate_assets(self, asset_filter: AssetFilter) -> Iterator[AssetRecord]:
        if not self.root.is_dir():
            raise CatalogAccessError(f"Catalog root is not a directory: {self.root}")

        for path in self._iter_files(self.root, self.skip_dirs):
            record = self._build_record(path)
            if record is None:
                continue
            with self._lock:
                self._records[record.identifier] = record
            if asset_filter.matches(record):
                yield record

    def byte_size(self, asset_id: str) -> int:
        try:
            return self._path_for(asset_id).stat().st_size
        except FileNotFoundError:
            logging.warning(f"Asset vanished during scan: {asset_id}")
            return 0

    def content_hash(self, asset_id: str) -> Optional[str]:
        """
        SHA-256 of the file, or its sparse digest when no known asset of the
        same byte size could share it.
        """
        path = self._path_for(asset_id)
        try:
            size = path.stat().st_size
            with self._lock:
                peers = [self._path_for(r.identifier) for r in self._records.values()
                         if r.byte_size == size and r.identifier != asset_id]
            result = self.hasher.compute_hash(path, peers)
        except OSError as e:
            logging.warning(f"Could not hash {asset_id}: {e}")
            return None
        return result.value if result else None

    def decode_thumbnail(self, asset_id: str, max_dimension: int) -> Optional[Image.Image]:
        path = self._path_for(asset_id)
        kind = config.EXT_TO_KIND.get(path.suffix.lower())
        if kind == MediaKind.VIDEO.value:
            return self._video_frame(asset_id, path, max_dimension)
        return self._image_thumbnail(path, max_dimension)

    def asset_exists(self, asset_ids: Iterable[str]) -> Set[str]:
        if not self.root.is_dir():
            raise CatalogAccessError(f"Catalog root is not a directory: {self.root}")
        return {asset_id for asset_id in asset_ids if self._path_for(asset_id).is_file()}

    def delete_assets(self, asset_ids: Iterable[str]) -> None:
        failures: List[str] = []
        for asset_id in asset_ids:
            path = self._path_for(asset_id)
            try:
                path.unlink()
                logging.info(f"Deleted {path}")
            except FileNotFoundError:
                logging.debug(f"Already gone: {path}")
            except OSError as e:
                logging.error(f"Failed to delete {path}: {e}")
                failures.append(asset_id)
            with self._lock:
                self._records.pop(asset_id, None)

        if failures:
            raise FileOperationError(f"Could not delete {len(failures)} assets: {', '.join(failures)}")

    def update_asset_metadata(self, asset_id: str, patch: MetadataPatch) -> None:
        """
        Applies a survivor patch to the cached record.

        An earlier creation date is also written to the file's modification
        time. EXIF and container tags are never rewritten.
        """
        path = self._path_for(asset_id)
        if patch.creation_date is not None:
            try:
                timestamp = patch.creation_date.timestamp()
                os.utime(path, (timestamp, timestamp))
            except OSError as e:
                raise FileOperationError(f"Could not update dates of {path}: {e}") from e

        with self._lock:
            record = self._records.get(asset_id)
            if record is not None:
                self._records[asset_id] = replace(
                    record,
                    creation_date=patch.creation_date or record.creation_date,
                    location=record.location or patch.location,
                )
        logging.info(f"Updated metadata of {asset_id}")

    # --- Helpers ---

    def _path_for(self, asset_id: str) -> Path:
        return self.root / Path(asset_id)

    def _identifier(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def _build_record(self, path: Path) -> Optional[AssetRecord]:
        if path.name.startswith("._"):
            return None
        kind = config.EXT_TO_KIND.get(path.suffix.lower())
        if kind is None:
            return None

        try:
            stat_result = path.stat()
            if kind == MediaKind.IMAGE.value:
                meta = self.extractor.get_image_metadata(path)
            elif kind == MediaKind.VIDEO.value:
                meta = self.extractor.get_video_metadata(path)
            else:
                meta = MediaMetadata()
        except OSError as e:
            logging.error(f"Failed to scan {path}: {e}")
            return None

        return AssetRecord(
            identifier=self._identifier(path),
            media_kind=MediaKind(kind),
            pixel_width=meta.pixel_width,
            pixel_height=meta.pixel_height,
            duration=meta.duration,
            byte_size=stat_result.st_size,
            creation_date=meta.creation_date or datetime.fromtimestamp(stat_result.st_mtime),
            location=meta.location,
            device_make=meta.device_make,
            device_model=meta.device_model,
        )

    def _image_thumbnail(self, path: Path, max_dimension: int) -> Image.Image:
        try:
            with Image.open(path) as img:
                # JPEG draft mode decodes at reduced scale
                img.draft("RGB", (max_dimension, max_dimension))
                img.thumbnail((max_dimension, max_dimension))
                return img.copy()
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            raise ThumbnailDecodeError(f"Cannot decode {path}: {e}") from e

    def _video_frame(self, asset_id: str, path: Path, max_dimension: int) -> Image.Image:
        """Grayscale frame at `frame_position` of the duration, decoded by ffmpeg."""
        with self._lock:
            record = self._records.get(asset_id)
        duration = record.duration if record else 0.0
        seek = max(0.0, duration * self.frame_position)

        cmd = [
            self.ffmpeg_path,
            "-hide_banner", "-nostdin",
            "-loglevel", "quiet", "-nostats",
            "-ss", f"{seek:.3f}",
            "-i", str(path),
            "-frames:v", "1",
            "-vf", f"scale={max_dimension}:{max_dimension}:flags=bicubic,format=gray",
            "-an", "-sn",
            "-f", "rawvideo", "-vcodec", "rawvideo",
            "pipe:1",
        ]
        try:
            proc = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.DEVNULL,
                                  stdin=subprocess.DEVNULL, timeout=FFMPEG_TIMEOUT_SECONDS, check=True)
        except (OSError, subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
            raise ThumbnailDecodeError(f"ffmpeg could not extract a frame from {path}: {e}") from e

        frame_size = max_dimension * max_dimension
        if len(proc.stdout) < frame_size:
            raise ThumbnailDecodeError(f"No frame decoded from {path}")

        frame = np.frombuffer(proc.stdout[:frame_size], dtype=np.uint8).reshape(max_dimension, max_dimension)
        return Image.fromarray(frame)

    def _iter_files(self, root: Path, skip_dirs: Set[Path]) -> Iterator[Path]:
        """Depth-first walker using os.scandir for speed."""
        stack = [root]
        while stack:
            current = stack.pop()
            if skip_dirs and any(sd == current or sd in current.parents for sd in skip_dirs):
                continue

            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except OSError:
                logging.warning(f"Permission denied: {current}")
                continue

            # Sort for stable traversal order
            entries.sort(key=lambda e: e.name.lower())

            dirs = []
            files = []
            for e in entries:
                if e.is_dir(follow_symlinks=False):
                    dirs.append(Path(e.path))
                elif e.is_file(follow_symlinks=False):
                    files.append(Path(e.path))

            # Push dirs reversed so A is processed before Z
            for d in reversed(dirs):
                stack.append(d)

            for f in files:
                yield f
