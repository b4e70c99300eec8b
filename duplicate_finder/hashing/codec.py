"""
Perceptual hashing of small grayscale thumbnails.

Computes three 64-bit hashes from the same grid:
- aHash (average hash): pixel brighter than the mean of an 8x8 downsample
- dHash (difference hash): left pixel brighter than its right neighbour
- pHash (perceptual hash): low-frequency DCT coefficients above their median

Pure functions, no I/O. Identical pixel input always yields the identical
triple: Pillow resampling and the luma conversion are integer-deterministic.
"""
from typing import Any, Union

import imagehash
import numpy as np
from PIL import Image

from .. import config
from ..exceptions import HashComputationError
from ..models import PerceptualHash

HASH_MASK = (1 << config.HASH_BITS) - 1

PixelGrid = Union[Image.Image, np.ndarray, Any]


def hamming_distance(a: int, b: int) -> int:
    """Number of differing bits between two 64-bit hashes (XOR + popcount)."""
    if not (0 <= a <= HASH_MASK and 0 <= b <= HASH_MASK):
        raise ValueError(f"Hashes must be unsigned {config.HASH_BITS}-bit integers")
    return bin(a ^ b).count("1")


def _hash_to_int(h: imagehash.ImageHash) -> int:
    # ImageHash renders its bit matrix row-major, most significant bit first
    return int(str(h), 16)


class HashCodec:
    def __init__(self, grid_size: int = config.HASH_GRID_SIZE, hash_size: int = config.HASH_SIZE):
        self.grid_size = grid_size
        self.hash_size = hash_size

    def compute(self, pixels: PixelGrid) -> PerceptualHash:
        """
        Hashes a decoded thumbnail or pixel grid.

        Accepts a PIL image or an array-like of shape (H, W), (H, W, 3) or
        (H, W, 4) with 8-bit values. Transparent regions are composited onto
        white before the luminance conversion.
        """
        try:
            image = self._to_image(pixels)
            gray = self.to_grid(image)
            return PerceptualHash(
                p=_hash_to_int(imagehash.phash(gray, hash_size=self.hash_size,
                                               highfreq_factor=self.grid_size // self.hash_size)),
                d=self._difference_hash(gray),
                a=_hash_to_int(imagehash.average_hash(gray, hash_size=self.hash_size)),
            )
        except HashComputationError:
            raise
        except (ValueError, TypeError, OSError) as e:
            raise HashComputationError(f"Cannot hash pixel input: {e}") from e

    def to_grid(self, image: Image.Image) -> Image.Image:
        """Flattens alpha onto white and returns the square luminance grid."""
        if image.mode in ("RGBA", "LA", "PA") or (image.mode == "P" and "transparency" in image.info):
            rgba = image.convert("RGBA")
            background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
            image = Image.alpha_composite(background, rgba)
        # Pillow's "L" conversion is L = R*299/1000 + G*587/1000 + B*114/1000
        gray = image.convert("L")
        if gray.size != (self.grid_size, self.grid_size):
            gray = gray.resize((self.grid_size, self.grid_size), Image.Resampling.LANCZOS)
        return gray

    def _difference_hash(self, gray: Image.Image) -> int:
        small = gray.resize((self.hash_size + 1, self.hash_size), Image.Resampling.LANCZOS)
        pixels = np.asarray(small, dtype=np.int16)
        diff = pixels[:, :-1] > pixels[:, 1:]
        return _hash_to_int(imagehash.ImageHash(diff))

    def _to_image(self, pixels: PixelGrid) -> Image.Image:
        if isinstance(pixels, Image.Image):
            return pixels

        arr = np.asarray(pixels)
        if arr.size == 0:
            raise HashComputationError("Empty pixel grid")
        if arr.dtype != np.uint8:
            if arr.min() < 0 or arr.max() > 255:
                raise HashComputationError("Pixel values must be within 0..255")
            arr = arr.astype(np.uint8)

        # (H, W) -> L, (H, W, 3) -> RGB, (H, W, 4) -> RGBA
        if arr.ndim == 2 or (arr.ndim == 3 and arr.shape[2] in (3, 4)):
            return Image.fromarray(arr)
        raise HashComputationError(f"Unsupported pixel grid shape: {arr.shape}")
