"""
Submission flow used by upload pipelines: fingerprint, detect, then register
only when the content is new.
"""

import mimetypes
from enum import Enum
from typing import Optional, Union

import structlog
from pydantic import BaseModel, Field

from mediaguard.core.errors import AlreadyRegistered
from mediaguard.core.registry import Registry
from mediaguard.models.fingerprint import FingerprintTriple, MediaKind
from mediaguard.models.registry import DetectResult, Record
from mediaguard.services.engine import media_kind

logger = structlog.get_logger()


class SubmissionStatus(str, Enum):
    NEW_ASSET_REGISTERED = "NEW_ASSET_REGISTERED"
    REPOST_DETECTED = "REPOST_DETECTED"


class SubmissionResult(BaseModel):
    """Outcome of submitting one media object."""
    status: SubmissionStatus
    kind: MediaKind
    fingerprint: FingerprintTriple
    detection: DetectResult
    record: Optional[Record] = Field(None, description="Set when the asset was registered")


def media_kind_from_mime(content_type: Optional[str], filename: Optional[str] = None) -> MediaKind:
    """Classify an upload as video, image, audio or other from its MIME type."""
    if not content_type and filename:
        content_type = mimetypes.guess_type(filename)[0]
    if not content_type:
        return MediaKind.OTHER

    major = content_type.split("/", 1)[0].lower()
    if major == "video":
        return MediaKind.VIDEO
    if major == "image":
        return MediaKind.IMAGE
    if major == "audio":
        return MediaKind.AUDIO
    return MediaKind.OTHER


def submit_media(
    engine,
    registry: Registry,
    owner: str,
    data: bytes,
    kind: Union[MediaKind, str],
    locator: str,
    suffix: str = ""
) -> SubmissionResult:
    """
    Fingerprint ``data`` and register it for ``owner`` unless it matches an
    existing record.

    ``engine`` is anything with a ``compute(data, kind, suffix)`` method,
    e.g. a FingerprintEngine or a FingerprintWorkerPool.
    """
    kind = media_kind(kind)
    fp = engine.compute(data, kind, suffix)

    detection = registry.detect(fp, actor=owner)
    if detection.match:
        logger.info("Repost detected, skipping registration",
                    owner=owner,
                    match_kind=detection.kind.value,
                    original_owner=detection.owner)
        return SubmissionResult(status=SubmissionStatus.REPOST_DETECTED, kind=kind,
                                fingerprint=fp, detection=detection)

    try:
        record = registry.register(owner, fp, locator)
    except AlreadyRegistered:
        # Lost a race with a concurrent submission of the same bytes
        detection = registry.detect(fp, actor=owner)
        return SubmissionResult(status=SubmissionStatus.REPOST_DETECTED, kind=kind,
                                fingerprint=fp, detection=detection)

    logger.info("New asset registered", owner=owner, exact_hash=fp.exact, kind=kind.value)
    return SubmissionResult(status=SubmissionStatus.NEW_ASSET_REGISTERED, kind=kind,
                            fingerprint=fp, detection=detection, record=record)
