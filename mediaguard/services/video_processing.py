import json
import os
import subprocess
import tempfile
from typing import Optional, Tuple

import cv2
import numpy as np
import structlog

from mediaguard import config
from mediaguard.core.errors import UnsupportedMedia
from mediaguard.core.utils import batch_cleanup_temp_files, cleanup_temp_file, save_temp_media
from mediaguard.services import image_hash
from mediaguard.services.fingerprint import AudioFingerprintStrategy

logger = structlog.get_logger()

DEFAULT_VIDEO_SUFFIX = ".mp4"


def read_first_frame(video_path: str) -> np.ndarray:
    """Decode the first frame of a video file as an RGB array."""
    cap = cv2.VideoCapture(video_path)
    try:
        if not cap.isOpened():
            raise UnsupportedMedia("Cannot open video stream")

        ok, frame = cap.read()
        if not ok or frame is None:
            raise UnsupportedMedia("Video contains no decodable frames")

        logger.debug("First frame decoded", video_path=video_path, shape=frame.shape)
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
    finally:
        cap.release()


def has_audio_stream(video_path: str, timeout: Optional[float] = None) -> bool:
    """Check for an audio stream with ffprobe. Missing ffprobe counts as no audio."""
    cmd = [
        "ffprobe",
        "-v", "quiet",
        "-print_format", "json",
        "-show_streams",
        video_path
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=timeout)
    except FileNotFoundError:
        logger.warning("ffprobe is not installed; skipping audio tier for video")
        return False
    except subprocess.TimeoutExpired as e:
        logger.error("FFprobe timed out", video_path=video_path, timeout=timeout)
        raise UnsupportedMedia("Video probe timed out") from e
    except subprocess.CalledProcessError as e:
        logger.warning("FFprobe failed", video_path=video_path, error=e.stderr)
        return False

    streams = json.loads(result.stdout or "{}").get("streams", [])
    return any(stream.get("codec_type") == "audio" for stream in streams)


def extract_audio(
    video_path: str,
    sample_rate: int = config.AUDIO_SAMPLE_RATE,
    timeout: Optional[float] = None
) -> Optional[str]:
    """Extract the first audio track of a video to a mono WAV file."""
    temp_fd, temp_file = tempfile.mkstemp(suffix=".wav", prefix="mediaguard_")
    os.close(temp_fd)

    cmd = [
        "ffmpeg",
        "-i", video_path,
        "-map", "a:0",
        "-ac", "1",
        "-ar", str(sample_rate),
        "-acodec", "pcm_s16le",
        temp_file,
        "-y",
        "-loglevel", "error"
    ]

    try:
        subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=timeout)
    except FileNotFoundError:
        cleanup_temp_file(temp_file)
        logger.warning("ffmpeg is not installed; skipping audio tier for video")
        return None
    except subprocess.TimeoutExpired as e:
        cleanup_temp_file(temp_file)
        logger.error("FFmpeg audio extraction timed out", video_path=video_path, timeout=timeout)
        raise UnsupportedMedia("Audio extraction timed out") from e
    except subprocess.CalledProcessError as e:
        # Audio extraction failure is not fatal
        cleanup_temp_file(temp_file)
        logger.warning("FFmpeg audio extraction failed", video_path=video_path, error=e.stderr)
        return None

    if os.path.getsize(temp_file) == 0:
        cleanup_temp_file(temp_file)
        logger.warning("Audio extraction produced empty file", video_path=video_path)
        return None

    logger.debug("Audio extracted", video_path=video_path, audio_path=temp_file)
    return temp_file


def fingerprint_video(
    data: bytes,
    audio_strategy: AudioFingerprintStrategy,
    hash_size: int = config.DHASH_SIZE,
    suffix: str = DEFAULT_VIDEO_SUFFIX,
    timeout: Optional[float] = None
) -> Tuple[str, Optional[str]]:
    """
    Compute the perceptual and audio tiers of a video.

    Returns:
        Tuple of (first_frame_dhash, audio_token_or_none)
    """
    video_path = save_temp_media(data, suffix=suffix)
    audio_path = None

    try:
        frame = read_first_frame(video_path)
        perceptual = image_hash.dhash_from_array(frame, hash_size)

        audio = None
        if has_audio_stream(video_path, timeout=timeout):
            audio_path = extract_audio(video_path, timeout=timeout)
            if audio_path:
                audio = audio_strategy.fingerprint_file(audio_path)

        logger.info("Video fingerprinting completed",
                    perceptual=perceptual,
                    has_audio_fingerprint=audio is not None)
        return perceptual, audio

    finally:
        batch_cleanup_temp_files([video_path, audio_path])
