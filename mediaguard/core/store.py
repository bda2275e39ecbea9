"""
Record stores backing the registry.

A store owns the durable state: the primary record table keyed by exact hash,
the append-only perceptual/audio/owner indices, the dispute table, the role
set and the counters. Each write method is atomic on its own.
"""

import threading
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Set

import structlog

from mediaguard.core.errors import AlreadyRegistered, AlreadyResolved, NotFound
from mediaguard.models.registry import Dispute, Record, RegistryStats

logger = structlog.get_logger()


class RegistryStore:
    """Interface implemented by registry backends."""

    # Records and indices
    def get_record(self, exact_hash: str) -> Optional[Record]:
        raise NotImplementedError

    def insert_record(self, record: Record) -> None:
        """Insert a record and append it to every index; raises AlreadyRegistered."""
        raise NotImplementedError

    def hashes_by_owner(self, owner: str) -> List[str]:
        raise NotImplementedError

    def first_by_perceptual(self, perceptual: str) -> Optional[str]:
        """Exact hash of the earliest record with this perceptual hash."""
        raise NotImplementedError

    def first_by_audio(self, audio: str) -> Optional[str]:
        """Exact hash of the earliest record with this audio token."""
        raise NotImplementedError

    def increment_views(self, exact_hash: str) -> int:
        raise NotImplementedError

    # Disputes
    def create_dispute(self, accuser: str, target_exact_hash: str, reason: str,
                       created_at: datetime) -> Dispute:
        """Flag the target record and append an open dispute; raises NotFound."""
        raise NotImplementedError

    def get_dispute(self, dispute_id: int) -> Optional[Dispute]:
        raise NotImplementedError

    def resolve_dispute(self, dispute_id: int, upheld: bool, resolver: str,
                        resolved_at: datetime) -> Dispute:
        """Close a dispute; raises NotFound or AlreadyResolved."""
        raise NotImplementedError

    # Roles
    def get_admin(self) -> Optional[str]:
        raise NotImplementedError

    def set_admin(self, principal: str) -> None:
        raise NotImplementedError

    def arbitrators(self) -> Set[str]:
        raise NotImplementedError

    def add_arbitrator(self, principal: str) -> bool:
        raise NotImplementedError

    def remove_arbitrator(self, principal: str) -> bool:
        raise NotImplementedError

    # Counters
    def increment_duplicates(self) -> int:
        raise NotImplementedError

    def stats(self) -> RegistryStats:
        raise NotImplementedError


class MemoryStore(RegistryStore):
    """In-process store. Writers serialize on a lock; readers do not block."""

    def __init__(self):
        self._lock = threading.RLock()
        self._by_exact: Dict[str, Record] = {}
        self._by_perceptual: Dict[str, List[str]] = defaultdict(list)
        self._by_audio: Dict[str, List[str]] = defaultdict(list)
        self._by_owner: Dict[str, List[str]] = defaultdict(list)
        self._disputes: List[Dispute] = []
        self._admin: Optional[str] = None
        self._arbitrators: Set[str] = set()
        self._total_registered = 0
        self._total_duplicates = 0

    def get_record(self, exact_hash: str) -> Optional[Record]:
        record = self._by_exact.get(exact_hash)
        return record.model_copy() if record is not None else None

    def insert_record(self, record: Record) -> None:
        fp = record.fingerprint
        with self._lock:
            if fp.exact in self._by_exact:
                raise AlreadyRegistered(fp.exact)

            # Primary entry first so index readers never see a dangling hash
            self._by_exact[fp.exact] = record.model_copy()
            if fp.perceptual is not None:
                self._by_perceptual[fp.perceptual].append(fp.exact)
            if fp.audio is not None:
                self._by_audio[fp.audio].append(fp.exact)
            self._by_owner[record.owner].append(fp.exact)
            self._total_registered += 1

    def hashes_by_owner(self, owner: str) -> List[str]:
        return list(self._by_owner.get(owner, ()))

    def first_by_perceptual(self, perceptual: str) -> Optional[str]:
        hashes = self._by_perceptual.get(perceptual)
        return hashes[0] if hashes else None

    def first_by_audio(self, audio: str) -> Optional[str]:
        hashes = self._by_audio.get(audio)
        return hashes[0] if hashes else None

    def increment_views(self, exact_hash: str) -> int:
        with self._lock:
            record = self._require_record(exact_hash)
            record.view_count += 1
            return record.view_count

    def create_dispute(self, accuser: str, target_exact_hash: str, reason: str,
                       created_at: datetime) -> Dispute:
        with self._lock:
            record = self._require_record(target_exact_hash)
            dispute = Dispute(
                id=len(self._disputes),
                accuser=accuser,
                target_exact_hash=target_exact_hash,
                reason=reason,
                created_at=created_at,
            )
            record.disputed = True
            self._disputes.append(dispute)
            return dispute.model_copy()

    def get_dispute(self, dispute_id: int) -> Optional[Dispute]:
        if 0 <= dispute_id < len(self._disputes):
            return self._disputes[dispute_id].model_copy()
        return None

    def resolve_dispute(self, dispute_id: int, upheld: bool, resolver: str,
                        resolved_at: datetime) -> Dispute:
        with self._lock:
            if not 0 <= dispute_id < len(self._disputes):
                raise NotFound(f"Dispute not found: {dispute_id}")

            dispute = self._disputes[dispute_id]
            if dispute.resolved:
                raise AlreadyResolved(f"Dispute already resolved: {dispute_id}")

            dispute.resolved = True
            dispute.upheld = upheld
            dispute.resolver = resolver
            dispute.resolved_at = resolved_at
            if not upheld:
                self._by_exact[dispute.target_exact_hash].disputed = False
            return dispute.model_copy()

    def get_admin(self) -> Optional[str]:
        return self._admin

    def set_admin(self, principal: str) -> None:
        with self._lock:
            self._admin = principal

    def arbitrators(self) -> Set[str]:
        return set(self._arbitrators)

    def add_arbitrator(self, principal: str) -> bool:
        with self._lock:
            if principal in self._arbitrators:
                return False
            self._arbitrators.add(principal)
            return True

    def remove_arbitrator(self, principal: str) -> bool:
        with self._lock:
            if principal not in self._arbitrators:
                return False
            self._arbitrators.discard(principal)
            return True

    def increment_duplicates(self) -> int:
        with self._lock:
            self._total_duplicates += 1
            return self._total_duplicates

    def stats(self) -> RegistryStats:
        return RegistryStats(
            total_registered=self._total_registered,
            total_duplicates_detected=self._total_duplicates,
            total_disputes=len(self._disputes),
        )

    def _require_record(self, exact_hash: str) -> Record:
        record = self._by_exact.get(exact_hash)
        if record is None:
            raise NotFound(f"Record not found: {exact_hash}")
        return record
