"""
Fingerprint engine: turns raw media bytes into a three-tier fingerprint.
"""

import hashlib
import threading
from concurrent.futures import (
    CancelledError, ThreadPoolExecutor, TimeoutError as FutureTimeoutError
)
from typing import Optional, Union

import structlog

from mediaguard import config
from mediaguard.core.errors import UnsupportedMedia
from mediaguard.models.fingerprint import FingerprintTriple, MediaKind
from mediaguard.services import image_hash, video_processing
from mediaguard.services.fingerprint import (
    AudioFingerprintStrategy, SpectralPeakFingerprinter, get_fingerprint_info
)

logger = structlog.get_logger()


def media_kind(kind: Union[MediaKind, str]) -> MediaKind:
    """Coerce a declared kind, rejecting anything outside video, image, audio and other."""
    try:
        return MediaKind(kind)
    except ValueError as e:
        raise UnsupportedMedia(f"Unknown media kind: {kind}") from e


def exact_hash(data: bytes) -> str:
    """SHA-256 digest of the complete byte buffer."""
    return hashlib.sha256(data).hexdigest()


class FingerprintEngine:
    """
    Stateless fingerprint computation.

    Image and video inputs get a dHash of their representative frame, audio
    and video inputs get a token from the configured audio strategy. Tiers
    that do not apply to the declared kind are left as ``None``.
    """

    def __init__(self,
                 audio_strategy: Optional[AudioFingerprintStrategy] = None,
                 hash_size: int = config.DHASH_SIZE,
                 decode_timeout: Optional[float] = config.FINGERPRINT_TIMEOUT_SECONDS,
                 max_bytes: Optional[int] = config.MAX_MEDIA_BYTES):
        self.audio_strategy = audio_strategy or SpectralPeakFingerprinter()
        self.hash_size = hash_size
        self.decode_timeout = decode_timeout
        self.max_bytes = max_bytes

    def compute(self, data: bytes, kind: Union[MediaKind, str], suffix: str = "") -> FingerprintTriple:
        """
        Compute the fingerprint triple for ``data`` declared as ``kind``.

        Args:
            data: Raw media bytes
            kind: Declared media kind (video, image, audio or other)
            suffix: Optional file extension hint for container decoders

        Raises:
            UnsupportedMedia: if the bytes cannot be decoded as declared, the
                kind is unknown, or the input exceeds ``max_bytes``
        """
        kind = media_kind(kind)
        if self.max_bytes is not None and len(data) > self.max_bytes:
            logger.warning("Media rejected, too large", size=len(data), max_bytes=self.max_bytes)
            raise UnsupportedMedia(f"Media exceeds {self.max_bytes} bytes")

        exact = exact_hash(data)
        perceptual = None
        audio = None

        if kind == MediaKind.IMAGE:
            perceptual = image_hash.dhash_from_bytes(data, self.hash_size)
        elif kind == MediaKind.VIDEO:
            perceptual, audio = video_processing.fingerprint_video(
                data,
                self.audio_strategy,
                hash_size=self.hash_size,
                suffix=suffix or video_processing.DEFAULT_VIDEO_SUFFIX,
                timeout=self.decode_timeout,
            )
        elif kind == MediaKind.AUDIO:
            audio = self.audio_strategy.fingerprint(data, suffix=suffix)

        triple = FingerprintTriple(exact=exact, perceptual=perceptual, audio=audio)
        logger.info("Fingerprint computed",
                    kind=kind.value,
                    size=len(data),
                    exact=exact,
                    perceptual=perceptual,
                    audio=audio)
        return triple

    def info(self) -> dict:
        info = {"exact": "sha256", "perceptual": f"dhash_{self.hash_size}x{self.hash_size}"}
        if isinstance(self.audio_strategy, SpectralPeakFingerprinter):
            info["audio"] = get_fingerprint_info(self.audio_strategy)
        else:
            info["audio"] = {"algorithm": self.audio_strategy.name}
        return info


class FingerprintWorkerPool:
    """
    Runs fingerprint computations on a thread pool with a hard per-call timeout.

    A decode that overruns its timeout cannot be interrupted, so the executor
    holding it is retired and later calls go to a fresh one.
    """

    def __init__(self,
                 engine: Optional[FingerprintEngine] = None,
                 max_workers: int = config.FINGERPRINT_WORKERS,
                 timeout: float = config.FINGERPRINT_TIMEOUT_SECONDS):
        self.engine = engine or FingerprintEngine()
        self.timeout = timeout
        self.max_workers = max_workers
        self._lock = threading.Lock()
        self._executor = self._new_executor()

    def _new_executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="fingerprint")

    def compute(self, data: bytes, kind: Union[MediaKind, str], suffix: str = "",
                timeout: Optional[float] = None) -> FingerprintTriple:
        """Compute a fingerprint, treating timeout expiry as UnsupportedMedia."""
        timeout = self.timeout if timeout is None else timeout
        with self._lock:
            executor = self._executor
            future = executor.submit(self.engine.compute, data, kind, suffix)

        try:
            return future.result(timeout=timeout)
        except CancelledError:
            # Queued on an executor retired by another caller's timeout
            logger.debug("Fingerprint call requeued on fresh executor", kind=str(kind))
            return self.compute(data, kind, suffix, timeout)
        except FutureTimeoutError as e:
            self._retire(executor)
            logger.error("Fingerprint computation timed out", kind=str(kind), timeout=timeout)
            raise UnsupportedMedia(f"Fingerprint computation exceeded {timeout}s") from e

    def _retire(self, executor: ThreadPoolExecutor) -> None:
        with self._lock:
            if self._executor is not executor:
                return
            self._executor = self._new_executor()
        executor.shutdown(wait=False, cancel_futures=True)
        logger.warning("Fingerprint executor replaced after timeout")

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            executor = self._executor
        executor.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
