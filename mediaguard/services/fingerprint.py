import hashlib
from typing import List, Optional, Tuple

import librosa
import numpy as np
import structlog
from scipy import ndimage

from mediaguard import config
from mediaguard.core.errors import UnsupportedMedia
from mediaguard.core.utils import cleanup_temp_file, save_temp_media

logger = structlog.get_logger()

# Fingerprinting configuration
WINDOW_SIZE = 2048
HOP_LENGTH = 512
N_MELS = 64
PEAK_NEIGHBORHOOD = 3
PEAK_PERCENTILE = 95
MAX_PEAKS = 1000
MIN_HASH_TIME_DELTA = 0
MAX_HASH_TIME_DELTA = 200
FAN_VALUE = 5


class AudioFingerprintStrategy:
    """
    Pluggable audio tier algorithm.

    Identical audio tracks should yield the same token and different tracks
    should not. ``None`` means the input carries no usable audio signal.
    """

    name = "abstract"

    def fingerprint_file(self, file_path: str) -> Optional[str]:
        raise NotImplementedError

    def fingerprint(self, data: bytes, suffix: str = "") -> Optional[str]:
        """Fingerprint in-memory audio bytes via a temporary file."""
        audio_path = save_temp_media(data, suffix=suffix)
        try:
            return self.fingerprint_file(audio_path)
        finally:
            cleanup_temp_file(audio_path)


class SpectralPeakFingerprinter(AudioFingerprintStrategy):
    """Audio fingerprinting using spectral peak pair hashing."""

    name = "spectral_peak_pair_hashing"

    def __init__(self,
                 sample_rate: int = config.AUDIO_SAMPLE_RATE,
                 window_size: int = WINDOW_SIZE,
                 hop_length: int = HOP_LENGTH,
                 max_duration: float = config.MAX_AUDIO_DURATION):
        self.sample_rate = sample_rate
        self.window_size = window_size
        self.hop_length = hop_length
        self.max_duration = max_duration

    def fingerprint_file(self, file_path: str) -> Optional[str]:
        """Decode an audio file and return the primary fingerprint token."""
        return self.fingerprint_samples(self._load(file_path))

    def fingerprint_samples(self, y: np.ndarray) -> Optional[str]:
        """Generate the primary token for mono samples at ``self.sample_rate``."""
        if y.size == 0:
            logger.warning("Audio track is empty")
            return None

        spectrogram = self._generate_spectrogram(y)
        peaks = self._find_spectral_peaks(spectrogram)
        hashes = self._generate_hash_pairs(peaks)

        if not hashes:
            logger.warning("No spectral peak pairs found", duration=len(y) / self.sample_rate)
            return None

        primary_hash = self._create_primary_hash(hashes)
        logger.info("Audio fingerprinting completed",
                    duration=len(y) / self.sample_rate,
                    peaks_found=len(peaks),
                    hashes_generated=len(hashes),
                    primary_hash=primary_hash)
        return primary_hash

    def _load(self, file_path: str) -> np.ndarray:
        try:
            y, _ = librosa.load(file_path, sr=self.sample_rate, mono=True, duration=self.max_duration)
        except Exception as e:
            logger.error("Failed to decode audio", file_path=file_path, error=str(e))
            raise UnsupportedMedia(f"Cannot decode audio: {e}") from e
        return y

    def _generate_spectrogram(self, y: np.ndarray) -> np.ndarray:
        """Generate mel-scaled spectrogram in decibels."""
        mel_spec = librosa.feature.melspectrogram(
            y=y,
            sr=self.sample_rate,
            n_fft=self.window_size,
            hop_length=self.hop_length,
            n_mels=N_MELS,
            power=2.0
        )
        mel_spec_db = librosa.power_to_db(mel_spec, ref=np.max)

        logger.debug("Spectrogram generated",
                     freq_bins=mel_spec_db.shape[0],
                     time_bins=mel_spec_db.shape[1])
        return mel_spec_db

    def _find_spectral_peaks(self, spectrogram: np.ndarray) -> List[Tuple[int, int]]:
        """Find local maxima above the 95th percentile, ordered by time then frequency."""
        neighborhood = 2 * PEAK_NEIGHBORHOOD + 1
        local_max = ndimage.maximum_filter(spectrogram, size=neighborhood, mode="constant",
                                           cval=-np.inf)
        threshold = np.percentile(spectrogram, PEAK_PERCENTILE)
        mask = (spectrogram == local_max) & (spectrogram > threshold)

        freqs, times = np.nonzero(mask)
        peaks = [(int(f), int(t)) for f, t in zip(freqs, times)]

        if len(peaks) > MAX_PEAKS:
            # Keep the strongest peaks; ties broken by position for determinism
            peaks.sort(key=lambda p: (-spectrogram[p[0], p[1]], p[1], p[0]))
            peaks = peaks[:MAX_PEAKS]

        peaks.sort(key=lambda p: (p[1], p[0]))
        logger.debug("Spectral peaks found", peaks=len(peaks), threshold=float(threshold))
        return peaks

    def _generate_hash_pairs(self, peaks: List[Tuple[int, int]]) -> List[str]:
        """Generate hashes from anchor/target peak pairs."""
        hashes = []
        for i, (f1, t1) in enumerate(peaks):
            for j in range(i + 1, min(i + FAN_VALUE + 1, len(peaks))):
                f2, t2 = peaks[j]
                time_delta = t2 - t1
                if time_delta < MIN_HASH_TIME_DELTA or time_delta > MAX_HASH_TIME_DELTA:
                    continue
                hashes.append(hashlib.sha1(f"{f1}|{f2}|{time_delta}".encode()).hexdigest())
        return hashes

    def _create_primary_hash(self, hashes: List[str]) -> str:
        combined_hash = "|".join(sorted(set(hashes)))
        return hashlib.sha1(combined_hash.encode()).hexdigest()


def get_fingerprint_info(strategy: SpectralPeakFingerprinter) -> dict:
    """Get information about the fingerprinting configuration."""
    return {
        "algorithm": strategy.name,
        "sample_rate": strategy.sample_rate,
        "window_size": strategy.window_size,
        "hop_length": strategy.hop_length,
        "n_mels": N_MELS,
        "fan_value": FAN_VALUE,
        "max_peaks": MAX_PEAKS,
    }
