"""
Error taxonomy for fingerprinting and registry operations.

Every error is surfaced to the caller synchronously; nothing here is retried.
"""


class MediaGuardError(Exception):
    """Base exception for MediaGuard errors."""


class UnsupportedMedia(MediaGuardError):
    """Raised when bytes cannot be decoded as the declared media kind, or decoding timed out."""


class InvalidFingerprint(MediaGuardError):
    """Raised when a fingerprint value is empty, zero or malformed."""


class LengthMismatch(MediaGuardError):
    """Raised when comparing perceptual hashes of different lengths."""


class AlreadyRegistered(MediaGuardError):
    """Raised when the exact hash is already owned by a record."""

    def __init__(self, exact_hash: str):
        super().__init__(f"Exact hash already registered: {exact_hash}")
        self.exact_hash = exact_hash


class NotFound(MediaGuardError):
    """Raised when a record or dispute does not exist."""


class EmptyReason(MediaGuardError):
    """Raised when a dispute is raised without a reason."""


class AlreadyResolved(MediaGuardError):
    """Raised when resolving a dispute that was already resolved."""


class Unauthorized(MediaGuardError):
    """Raised when the acting party lacks the admin or arbitrator role."""


class InvalidIdentity(MediaGuardError):
    """Raised when a principal identity is empty."""


class InvalidLocator(MediaGuardError):
    """Raised when a record is registered without a storage locator."""
