"""
Registry and duplicate detection service.

Detection checks the tiers in priority order (exact, perceptual, audio) and
always resolves a tier to its earliest registrant. Registration, disputes and
role changes are serialized through a single writer lock per registry.
"""

import string
import threading
from datetime import datetime
from typing import Callable, List, Optional

import structlog

from mediaguard.core.errors import (
    AlreadyRegistered, EmptyReason, InvalidFingerprint, InvalidIdentity, InvalidLocator, NotFound,
    Unauthorized
)
from mediaguard.core.events import EventBus
from mediaguard.core.store import MemoryStore, RegistryStore
from mediaguard.core.utils import utc_now
from mediaguard.models.fingerprint import FingerprintTriple
from mediaguard.models.registry import (
    DetectResult, Dispute, MatchKind, Record, RegistryEvent, RegistryStats
)

logger = structlog.get_logger()

EXACT_HASH_LENGTH = 64


def validate_exact_hash(value: str) -> str:
    """Reject empty, all-zero or non SHA-256 exact hashes."""
    if not value:
        raise InvalidFingerprint("Exact hash is empty")
    if len(value) != EXACT_HASH_LENGTH or not set(value) <= set(string.hexdigits):
        raise InvalidFingerprint(f"Exact hash must be {EXACT_HASH_LENGTH} hex characters")
    if int(value, 16) == 0:
        raise InvalidFingerprint("Exact hash is the zero digest")
    return value


def _require_identity(principal: Optional[str], role: str = "principal") -> str:
    if principal is None or not str(principal).strip():
        raise InvalidIdentity(f"Invalid {role} identity")
    return principal


class Registry:
    """
    Content registry with multi-tier duplicate detection and dispute arbitration.

    Args:
        store: Backend holding records, indices, disputes, roles and counters
        admin: Initial admin identity; only used when the store has none yet
        clock: Callable returning the current UTC time
        events: Event bus notified of every state change
    """

    def __init__(self,
                 store: Optional[RegistryStore] = None,
                 admin: Optional[str] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 events: Optional[EventBus] = None):
        self.store = store or MemoryStore()
        self.events = events or EventBus()
        self._clock = clock or utc_now
        self._last_time: Optional[datetime] = None
        self._write_lock = threading.RLock()

        if self.store.get_admin() is None:
            self.store.set_admin(_require_identity(admin, "admin"))
            logger.info("Registry initialized", admin=admin)

    # ------------------------------------------------------------------
    # Detection and registration
    # ------------------------------------------------------------------

    def detect(self, fp: FingerprintTriple, actor: Optional[str] = None) -> DetectResult:
        """Look up a fingerprint, returning the first tier that matches."""
        result = self._match(fp)

        if result.match:
            logger.info("Duplicate detected",
                        kind=result.kind.value,
                        exact_hash=fp.exact,
                        matched_hash=result.matched_hash,
                        original_owner=result.owner,
                        actor=actor)
            with self._write_lock:
                self.store.increment_duplicates()
                self._publish("DuplicateDetected", actor, fp.exact,
                              matched_hash=result.matched_hash,
                              match_kind=result.kind.value,
                              original_owner=result.owner)
        else:
            logger.debug("No duplicate found", exact_hash=fp.exact)

        return result

    def _match(self, fp: FingerprintTriple) -> DetectResult:
        record = self.store.get_record(fp.exact)
        if record is not None:
            return DetectResult.from_record(MatchKind.EXACT_DUPLICATE, record)

        if fp.perceptual is not None:
            first = self.store.first_by_perceptual(fp.perceptual)
            if first is not None:
                return DetectResult.from_record(MatchKind.VISUAL_MATCH, self.store.get_record(first))

        if fp.audio is not None:
            first = self.store.first_by_audio(fp.audio)
            if first is not None:
                return DetectResult.from_record(MatchKind.AUDIO_MATCH, self.store.get_record(first))

        return DetectResult.original()

    def register(self, owner: str, fp: FingerprintTriple, locator: str) -> Record:
        """
        Record ownership of a new asset.

        Raises:
            InvalidFingerprint: exact hash is empty, zero or malformed
            InvalidIdentity: owner is empty
            InvalidLocator: locator is empty
            AlreadyRegistered: the exact hash already belongs to a record
        """
        with self._write_lock:
            validate_exact_hash(fp.exact)
            _require_identity(owner, "owner")
            if not locator or not locator.strip():
                raise InvalidLocator("Locator is required")

            record = Record(owner=owner, fingerprint=fp, locator=locator, created_at=self._now())
            try:
                self.store.insert_record(record)
            except AlreadyRegistered:
                logger.warning("Registration rejected, exact hash already registered",
                               owner=owner, exact_hash=fp.exact)
                raise

            logger.info("Record registered", owner=owner, exact_hash=fp.exact, locator=locator)
            self._publish("Registered", owner, fp.exact, timestamp=record.created_at,
                          perceptual=fp.perceptual, audio=fp.audio, locator=locator)
        return record

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    def raise_dispute(self, accuser: str, target_exact_hash: str, reason: str) -> int:
        """Open a dispute and flag the target record immediately. Returns the dispute id."""
        with self._write_lock:
            _require_identity(accuser, "accuser")
            if not reason or not reason.strip():
                raise EmptyReason("A dispute reason is required")

            dispute = self.store.create_dispute(accuser, target_exact_hash, reason, self._now())

            logger.info("Dispute raised", dispute_id=dispute.id, accuser=accuser,
                        exact_hash=target_exact_hash)
            self._publish("DisputeRaised", accuser, target_exact_hash,
                          timestamp=dispute.created_at, dispute_id=dispute.id, reason=reason)
        return dispute.id

    def resolve_dispute(self, dispute_id: int, upheld: bool, actor: str) -> Dispute:
        """
        Close a dispute. Rejecting it (upheld=False) clears the record's
        disputed flag; upholding it leaves the flag set.
        """
        with self._write_lock:
            if not self.is_arbitrator(actor):
                logger.warning("Unauthorized dispute resolution", dispute_id=dispute_id, actor=actor)
                raise Unauthorized("Only an arbitrator can resolve disputes")

            dispute = self.store.resolve_dispute(dispute_id, upheld, actor, self._now())

            logger.info("Dispute resolved", dispute_id=dispute_id, upheld=upheld, resolver=actor)
            self._publish("DisputeResolved", actor, dispute.target_exact_hash,
                          timestamp=dispute.resolved_at, dispute_id=dispute_id, upheld=upheld)
        return dispute

    def get_dispute(self, dispute_id: int) -> Dispute:
        dispute = self.store.get_dispute(dispute_id)
        if dispute is None:
            raise NotFound(f"Dispute not found: {dispute_id}")
        return dispute

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    @property
    def admin(self) -> str:
        return self.store.get_admin()

    def arbitrators(self) -> set:
        """Explicit arbitrators; the admin is an arbitrator without being listed."""
        return self.store.arbitrators()

    def is_arbitrator(self, principal: Optional[str]) -> bool:
        if not principal:
            return False
        return principal == self.store.get_admin() or principal in self.store.arbitrators()

    def add_arbitrator(self, principal: str, actor: str) -> None:
        with self._write_lock:
            self._require_admin(actor)
            _require_identity(principal, "arbitrator")
            if self.store.add_arbitrator(principal):
                logger.info("Arbitrator added", arbitrator=principal, actor=actor)
                self._publish("ArbitratorAdded", actor, None, arbitrator=principal)

    def remove_arbitrator(self, principal: str, actor: str) -> None:
        with self._write_lock:
            self._require_admin(actor)
            _require_identity(principal, "arbitrator")
            if self.store.remove_arbitrator(principal):
                logger.info("Arbitrator removed", arbitrator=principal, actor=actor)
                self._publish("ArbitratorRemoved", actor, None, arbitrator=principal)

    def transfer_admin(self, new_admin: str, actor: str) -> None:
        with self._write_lock:
            self._require_admin(actor)
            _require_identity(new_admin, "admin")
            self.store.set_admin(new_admin)

            logger.info("Admin transferred", previous_admin=actor, new_admin=new_admin)
            self._publish("AdminTransferred", actor, None, new_admin=new_admin)

    def _require_admin(self, actor: Optional[str]) -> None:
        if not actor or actor != self.store.get_admin():
            logger.warning("Unauthorized admin action", actor=actor)
            raise Unauthorized("Only the admin can perform this action")

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def get_record(self, exact_hash: str) -> Record:
        record = self.store.get_record(exact_hash)
        if record is None:
            raise NotFound(f"Record not found: {exact_hash}")
        return record

    def exists(self, exact_hash: str) -> bool:
        return self.store.get_record(exact_hash) is not None

    def records_by_owner(self, owner: str) -> List[Record]:
        """Records registered by ``owner``, oldest first."""
        return [self.store.get_record(h) for h in self.store.hashes_by_owner(owner)]

    def stats(self) -> RegistryStats:
        return self.store.stats()

    def increment_views(self, exact_hash: str) -> int:
        with self._write_lock:
            return self.store.increment_views(exact_hash)

    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        now = self._clock()
        if self._last_time is not None and now < self._last_time:
            now = self._last_time
        self._last_time = now
        return now

    def _publish(self, name: str, actor: Optional[str], exact_hash: Optional[str],
                 timestamp: Optional[datetime] = None, **details) -> None:
        # Called under the writer lock so observers see events in commit order
        event = RegistryEvent(name=name, actor=actor, timestamp=timestamp or self._now(),
                              exact_hash=exact_hash, details=details)
        self.events.publish(event)
