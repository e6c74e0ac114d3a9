"""
Error Types

Every failure raised by the certificate, key and envelope helpers derives from
PushCertError so callers can catch the whole family at once.
"""

from datetime import datetime
from enum import Enum
from typing import Optional


class PushCertError(Exception):
    """Base class for all pushcert errors."""


class KeyGenerationError(PushCertError):
    """Key pair or serial number generation failed."""


class CertificateConstructionError(PushCertError):
    """Building or self-signing a certificate failed."""


class ArmorDecodeError(PushCertError):
    """A PEM block sequence was malformed, mistyped or truncated."""


class CardinalityError(PushCertError):
    """Wrong number of certificates where exactly one was required."""

    def __init__(self, found: int):
        self.found = found
        super().__init__(f"incorrect number of certificates: expected 1, found {found}")


class MissingPassphraseError(PushCertError):
    """The key block is encrypted but no passphrase was supplied."""


class UnexpectedPassphraseError(PushCertError):
    """A passphrase was supplied but the key block is not encrypted."""


class KeyDecodeError(PushCertError):
    """Key material could not be decrypted or parsed."""


class TopicNotFoundError(PushCertError):
    """The certificate subject carries no UserID attribute."""


class InvalidTopicError(PushCertError):
    """The UserID attribute is not a valid push topic."""

    def __init__(self, value):
        self.value = value
        super().__init__(
            f"invalid push topic (UserID OID) in certificate, "
            f"must start with 'com.apple.mgmt', was: {value!r}"
        )


class VerificationCheck(str, Enum):
    """Which check of a signed envelope failed."""
    STRUCTURE = "structure"
    SIGNATURE = "signature"
    VALIDITY_WINDOW = "validity_window"
    CHAIN = "chain"


class VerificationError(PushCertError):
    """
    A signed envelope failed verification.

    Attributes:
        check: The VerificationCheck that failed
        message: Human-readable description
    """

    def __init__(self, check: VerificationCheck, message: str):
        self.check = check
        self.message = message
        super().__init__(f"{check.value}: {message}")


class ValidityWindowError(VerificationError):
    """The reference time falls outside a certificate's validity window."""

    def __init__(
        self,
        message: str,
        not_before: Optional[datetime] = None,
        not_after: Optional[datetime] = None,
        at: Optional[datetime] = None,
    ):
        self.not_before = not_before
        self.not_after = not_after
        self.at = at
        super().__init__(VerificationCheck.VALIDITY_WINDOW, message)
