import hashlib
import io

import numpy as np
import pytest
import soundfile as sf
from PIL import Image

from mediaguard.core.registry import Registry
from mediaguard.models.fingerprint import FingerprintTriple

SAMPLE_RATE = 8000


@pytest.fixture
def registry():
    return Registry(admin="admin")


@pytest.fixture
def make_fp():
    def _make(seed, perceptual=None, audio=None):
        exact = hashlib.sha256(str(seed).encode()).hexdigest()
        return FingerprintTriple(exact=exact, perceptual=perceptual, audio=audio)
    return _make


@pytest.fixture
def block_image():
    """Image made of 9x8 flat blocks with large steps between neighbours."""
    def _make(seed=0, block=10):
        rng = np.random.default_rng(seed)
        grid = rng.choice(np.arange(0, 256, 40), size=(8, 9)).astype(np.uint8)
        pixels = np.kron(grid, np.ones((block, block), dtype=np.uint8))
        return Image.fromarray(pixels).convert("RGB")
    return _make


@pytest.fixture
def image_bytes():
    def _encode(image, fmt="PNG", **params):
        buf = io.BytesIO()
        image.save(buf, format=fmt, **params)
        return buf.getvalue()
    return _encode


@pytest.fixture
def melody():
    """A short sequence of tones with a little seeded noise."""
    def _make(freqs=(440, 660, 550, 880), seconds_per_tone=0.5, seed=0):
        rng = np.random.default_rng(seed)
        t = np.linspace(0, seconds_per_tone, int(SAMPLE_RATE * seconds_per_tone), endpoint=False)
        tones = [0.6 * np.sin(2 * np.pi * f * t) for f in freqs]
        signal = np.concatenate(tones)
        return signal + 0.01 * rng.standard_normal(signal.shape)
    return _make


@pytest.fixture
def audio_bytes():
    def _encode(samples, fmt="WAV"):
        buf = io.BytesIO()
        sf.write(buf, samples, SAMPLE_RATE, format=fmt)
        return buf.getvalue()
    return _encode
