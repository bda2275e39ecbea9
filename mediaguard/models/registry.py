"""
Pydantic models for registry records, detection results and disputes.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .fingerprint import FingerprintTriple

__all__ = [
    "MatchKind",
    "MATCH_CONFIDENCE",
    "Record",
    "DetectResult",
    "Dispute",
    "RegistryStats",
    "RegistryEvent",
]


class MatchKind(str, Enum):
    """Enumeration of detection outcomes, in tier priority order."""
    EXACT_DUPLICATE = "EXACT_DUPLICATE"
    VISUAL_MATCH = "VISUAL_MATCH"
    AUDIO_MATCH = "AUDIO_MATCH"
    ORIGINAL = "ORIGINAL"


# Percent confidence reported per tier
MATCH_CONFIDENCE = {
    MatchKind.EXACT_DUPLICATE: 100,
    MatchKind.VISUAL_MATCH: 95,
    MatchKind.AUDIO_MATCH: 92,
    MatchKind.ORIGINAL: 0,
}


class Record(BaseModel):
    """Registration entry binding an exact hash to its owner and locator."""
    owner: str = Field(..., description="Identity of the registering party")
    fingerprint: FingerprintTriple = Field(..., description="Fingerprint at registration time")
    locator: str = Field(..., description="Opaque content-addressed storage pointer")
    created_at: datetime = Field(..., description="Registration time (UTC)")
    disputed: bool = Field(default=False, description="Set while the record is under dispute")
    view_count: int = Field(default=0, ge=0, description="Number of recorded views")

    @property
    def exact_hash(self) -> str:
        return self.fingerprint.exact


class DetectResult(BaseModel):
    """Outcome of a duplicate detection lookup."""
    match: bool = Field(..., description="True if any tier matched a registered record")
    kind: MatchKind = Field(..., description="Tier that matched, or ORIGINAL")
    owner: Optional[str] = Field(None, description="Owner of the matched record")
    locator: Optional[str] = Field(None, description="Locator of the matched record")
    matched_hash: Optional[str] = Field(None, description="Exact hash of the matched record")
    confidence: int = Field(0, ge=0, le=100, description="Match confidence in percent")

    @classmethod
    def original(cls) -> "DetectResult":
        return cls(match=False, kind=MatchKind.ORIGINAL)

    @classmethod
    def from_record(cls, kind: MatchKind, record: Record) -> "DetectResult":
        return cls(
            match=True,
            kind=kind,
            owner=record.owner,
            locator=record.locator,
            matched_hash=record.exact_hash,
            confidence=MATCH_CONFIDENCE[kind],
        )


class Dispute(BaseModel):
    """Ownership dispute raised against a registered record."""
    id: int = Field(..., ge=0, description="Sequential dispute identifier")
    accuser: str = Field(..., description="Identity of the party raising the dispute")
    target_exact_hash: str = Field(..., description="Exact hash of the disputed record")
    reason: str = Field(..., min_length=1, description="Reason given by the accuser")
    created_at: datetime = Field(..., description="Time the dispute was raised (UTC)")
    resolved: bool = Field(default=False)
    resolver: Optional[str] = Field(None, description="Arbitrator who resolved the dispute")
    upheld: bool = Field(default=False, description="Outcome, meaningful once resolved")
    resolved_at: Optional[datetime] = Field(None)


class RegistryStats(BaseModel):
    """Registry-wide counters."""
    total_registered: int = Field(0, ge=0)
    total_duplicates_detected: int = Field(0, ge=0)
    total_disputes: int = Field(0, ge=0)


class RegistryEvent(BaseModel):
    """Notification of a registry state change."""
    name: str = Field(..., description="Event name, e.g. Registered or DisputeRaised")
    actor: Optional[str] = Field(None, description="Party that triggered the event")
    timestamp: datetime = Field(...)
    exact_hash: Optional[str] = Field(None, description="Affected exact hash, if any")
    details: Dict[str, Any] = Field(default_factory=dict)
