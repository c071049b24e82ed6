"""Block-mean perceptual hash for screenshots.

The image is reduced to a HASH_SIZE x HASH_SIZE grid of grayscale block
means. Each block becomes one bit: set when the block is brighter than the
median of its horizontal band. Visually similar screenshots end up a small
Hamming distance apart.
"""

import logging
from pathlib import Path

import numpy as np
from PIL import Image, ImageOps

import config as cfg

logger = logging.getLogger(__name__)


class HashComputationError(Exception):
    """The image could not be read or decoded."""


def compute_hash(image_path: Path | str, size: int | None = None) -> str:
    """Return the perceptual hash of an image as a hex string.

    A size of 16 yields 256 bits (64 hex characters).
    """
    size = size or cfg.HASH_SIZE
    try:
        with Image.open(image_path) as img:
            img = ImageOps.exif_transpose(img)
            gray = img.convert("L")
            blocks = np.asarray(gray.resize((size, size), Image.BOX), dtype=np.float64)
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise HashComputationError(f"Cannot hash {image_path}: {e}") from e

    flat = blocks.reshape(-1)
    bands = np.array_split(flat, cfg.HASH_BANDS)
    bits = np.concatenate([band > np.median(band) for band in bands])
    return np.packbits(bits.astype(np.uint8)).tobytes().hex()


def hash_bits(hash_hex: str) -> int:
    return len(hash_hex) * 4


def similarity_threshold(hash_hex: str) -> int:
    """Max Hamming distance at which two hashes of this width count as similar."""
    return int(hash_bits(hash_hex) * cfg.HAMMING_THRESHOLD_FRACTION)


def hamming_distance(hash_a: str, hash_b: str) -> int:
    """Number of differing bits between two hex hashes.

    Hashes of different widths (or unparseable ones) get one more than the
    widest possible distance, so they are never considered similar.
    """
    unrelated = max(hash_bits(hash_a), hash_bits(hash_b)) + 1
    if len(hash_a) != len(hash_b):
        return unrelated
    if not hash_a:
        return 0
    try:
        diff = int(hash_a, 16) ^ int(hash_b, 16)
    except ValueError:
        logger.debug("Unparseable hash pair %r / %r", hash_a, hash_b)
        return unrelated
    return bin(diff).count("1")
