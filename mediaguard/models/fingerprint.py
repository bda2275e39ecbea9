"""
Pydantic models for fingerprint data structures.
"""

import string
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = ["MediaKind", "FingerprintTriple"]

_HEX_DIGITS = set(string.hexdigits)


class MediaKind(str, Enum):
    """Enumeration of declared media kinds."""
    VIDEO = "video"
    IMAGE = "image"
    AUDIO = "audio"
    OTHER = "other"


class FingerprintTriple(BaseModel):
    """
    Immutable three-tier fingerprint of a media object.

    ``perceptual`` and ``audio`` are ``None`` when the tier does not apply to
    the media kind, so an absent tier can never equal a real hash.
    """
    model_config = ConfigDict(frozen=True)

    exact: str = Field(..., description="SHA-256 hex digest of the full byte content")
    perceptual: Optional[str] = Field(None, description="Hex-encoded dHash bit-string")
    audio: Optional[str] = Field(None, description="Opaque audio fingerprint token")

    @field_validator("exact", mode="before")
    @classmethod
    def normalize_exact(cls, v):
        if isinstance(v, bytes):
            return v.hex()
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("perceptual")
    @classmethod
    def validate_perceptual(cls, v):
        if v is None:
            return v
        v = v.lower()
        if not v or not set(v) <= _HEX_DIGITS:
            raise ValueError("Perceptual hash must be a non-empty hex string")
        return v

    @field_validator("audio")
    @classmethod
    def validate_audio(cls, v):
        if v is not None and not v.strip():
            raise ValueError("Audio token must be non-empty; use None when not applicable")
        return v
