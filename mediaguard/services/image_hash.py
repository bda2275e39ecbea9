"""
Perceptual image hashing for the visual fingerprint tier.
Uses the difference hash (dHash) over a single representative frame.
"""

import io
import string

import numpy as np
import structlog
from PIL import Image

from mediaguard import config
from mediaguard.core.errors import InvalidFingerprint, LengthMismatch, UnsupportedMedia

logger = structlog.get_logger()

_HEX_DIGITS = set(string.hexdigits)


def dhash(image: Image.Image, hash_size: int = config.DHASH_SIZE) -> str:
    """
    Generate difference hash (dHash) for an image.

    The image is reduced to a (hash_size + 1) x hash_size luminance grid and
    each horizontally adjacent pair yields one bit: 1 if the left pixel is
    brighter than the right one. Bits are read row-major and hex encoded.
    """
    if hash_size < 2:
        raise ValueError("hash_size must be at least 2")

    grayscale = image.convert("L")
    grayscale = grayscale.resize((hash_size + 1, hash_size), Image.Resampling.LANCZOS)
    pixels = np.asarray(grayscale, dtype=np.int16)

    diff = pixels[:, :-1] > pixels[:, 1:]
    hash_bits = "".join("1" if b else "0" for b in diff.flatten())

    # n*n bits, hex width rounded up to whole nibbles
    width = (len(hash_bits) + 3) // 4
    return format(int(hash_bits, 2), f"0{width}x")


def dhash_from_array(frame: np.ndarray, hash_size: int = config.DHASH_SIZE) -> str:
    """Generate dHash for a decoded RGB or grayscale pixel array."""
    return dhash(Image.fromarray(frame), hash_size)


def dhash_from_bytes(data: bytes, hash_size: int = config.DHASH_SIZE) -> str:
    """Decode image bytes and generate their dHash."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.load()
            decoded = image.copy()
    except Exception as e:
        # Pillow signals corrupt input with OSError, SyntaxError, EOFError and others
        logger.error("Failed to decode image for dHash", size=len(data), error=str(e))
        raise UnsupportedMedia(f"Cannot decode image: {e}") from e

    hash_hex = dhash(decoded, hash_size)
    logger.debug("Generated dHash", hash_size=hash_size, dhash=hash_hex)
    return hash_hex


def hamming_distance(hash1: str, hash2: str) -> int:
    """Calculate Hamming distance between two hex-encoded hashes of equal length."""
    if len(hash1) != len(hash2):
        raise LengthMismatch(f"Cannot compare hashes of length {len(hash1)} and {len(hash2)}")

    # int(x, 16) alone would also accept signs, 0x prefixes, underscores and spaces
    for value in (hash1, hash2):
        if not set(value) <= _HEX_DIGITS:
            raise InvalidFingerprint(f"Perceptual hash must be a hex string: {value!r}")

    value1 = int(hash1, 16) if hash1 else 0
    value2 = int(hash2, 16) if hash2 else 0
    return bin(value1 ^ value2).count("1")


def similarity_percent(hash1: str, hash2: str) -> float:
    """Similarity between two hashes: 100 * (1 - distance / bit length)."""
    distance = hamming_distance(hash1, hash2)
    bits = len(hash1) * 4
    if bits == 0:
        return 100.0
    return 100.0 * (1.0 - distance / bits)
