"""
Media processing services for fingerprinting and duplicate submission.
"""

from .engine import FingerprintEngine, FingerprintWorkerPool, exact_hash, media_kind
from .fingerprint import AudioFingerprintStrategy, SpectralPeakFingerprinter
from .image_hash import dhash, hamming_distance, similarity_percent
from .submission import SubmissionResult, SubmissionStatus, media_kind_from_mime, submit_media
