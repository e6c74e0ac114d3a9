"""
Skew-Tolerant PKCS7 Verification

Verifies PKCS7 envelopes while tolerating clock skew between the signing
device and this server.

Policy (at most two attempts):
    1. Verify at now + max_skew.
    2. If that failed only because a certificate was outside its validity
       window, verify once more at now - max_skew; that outcome is final.
    3. Any other failure (bad signature, untrusted chain, malformed envelope)
       is returned immediately.

Signature and chain checks are never relaxed; only the reference time moves.
"""

import datetime
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from cryptography import x509

from pushcert.core.crypto.envelope import SignedEnvelope
from pushcert.core.crypto.errors import ValidityWindowError, VerificationError

logger = logging.getLogger(__name__)


Clock = Callable[[], datetime.datetime]


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class VerificationResult:
    """
    Result of envelope verification.

    Attributes:
        success: Whether verification succeeded
        error: The VerificationError of the final attempt, if it failed
        attempts: Number of verification attempts made (1 or 2)
        reference_time: Reference time used by the final attempt
    """
    success: bool
    attempts: int
    reference_time: datetime.datetime
    error: Optional[VerificationError] = None

    @classmethod
    def ok(cls, attempts: int, reference_time: datetime.datetime) -> "VerificationResult":
        """Create a successful result."""
        return cls(success=True, attempts=attempts, reference_time=reference_time)

    @classmethod
    def fail(
        cls,
        error: VerificationError,
        attempts: int,
        reference_time: datetime.datetime,
    ) -> "VerificationResult":
        """Create a failed result."""
        return cls(success=False, attempts=attempts, reference_time=reference_time, error=error)

    def raise_for_error(self) -> None:
        """Raise the stored VerificationError if verification failed."""
        if self.error is not None:
            raise self.error


class PKCS7Verifier:
    """
    Verifies PKCS7 envelopes with a configurable clock skew.

    Attributes:
        max_skew: Maximum skew permitted between server time and the
                  signer certificate's validity window (may be zero)
    """

    def __init__(self, max_skew: datetime.timedelta = datetime.timedelta(0), clock: Optional[Clock] = None):
        if max_skew < datetime.timedelta(0):
            raise ValueError(f"max_skew must not be negative, got {max_skew}")
        self.max_skew = max_skew
        self._clock = clock or utc_now

    @classmethod
    def from_settings(cls, settings=None, clock: Optional[Clock] = None) -> "PKCS7Verifier":
        """Build a verifier from Settings.pkcs7_max_skew_seconds."""
        from pushcert.core.config import get_settings

        settings = settings or get_settings()
        return cls(max_skew=settings.pkcs7_max_skew, clock=clock)

    def verify(
        self,
        envelope: SignedEnvelope,
        trust_anchors: Optional[Sequence[x509.Certificate]] = None,
    ) -> VerificationResult:
        """
        Verify an envelope's signatures and certificates.

        Args:
            envelope: Parsed PKCS7 envelope
            trust_anchors: Anchor certificates; None skips chain building

        Returns:
            VerificationResult with success status and details

        Example:
            >>> verifier = PKCS7Verifier(max_skew=timedelta(minutes=15))
            >>> result = verifier.verify(SignedEnvelope.load(der))
            >>> if not result.success:
            ...     # Reject with result.error
        """
        now = self._clock()

        # verify with skew added to the beginning of the validity window
        forward = now + self.max_skew
        try:
            envelope.verify_at(trust_anchors, forward)
            return VerificationResult.ok(attempts=1, reference_time=forward)
        except ValidityWindowError as e:
            logger.info(f"PKCS7 outside validity window at {forward.isoformat()}, retrying with skew subtracted: {e.message}")
        except VerificationError as e:
            logger.warning(f"PKCS7 verification failed ({e.check.value}): {e.message}")
            return VerificationResult.fail(e, attempts=1, reference_time=forward)

        # then with skew added to the end of the validity window
        backward = now - self.max_skew
        try:
            envelope.verify_at(trust_anchors, backward)
        except VerificationError as e:
            logger.warning(f"PKCS7 verification failed after skew retry ({e.check.value}): {e.message}")
            return VerificationResult.fail(e, attempts=2, reference_time=backward)
        return VerificationResult.ok(attempts=2, reference_time=backward)
