"""
Push Certificate Crypto Module

Certificate and RSA key lifecycle helpers for MDM push infrastructure:
self-signed issuance, PEM encoding (with legacy encrypted key blocks),
push topic extraction, and skew-tolerant PKCS7 verification.
"""

from pushcert.core.crypto.errors import (
    PushCertError,
    KeyGenerationError,
    CertificateConstructionError,
    ArmorDecodeError,
    CardinalityError,
    MissingPassphraseError,
    UnexpectedPassphraseError,
    KeyDecodeError,
    TopicNotFoundError,
    InvalidTopicError,
    VerificationCheck,
    VerificationError,
    ValidityWindowError,
)
from pushcert.core.crypto.issuer import (
    generate_serial_number,
    generate_self_signed,
)
from pushcert.core.crypto.keys import (
    decode_certificates,
    decode_certificate,
    encode_certificate,
    decode_key,
    encode_key,
)
from pushcert.core.crypto.topic import topic_from_certificate
from pushcert.core.crypto.envelope import SignedEnvelope
from pushcert.core.crypto.verify import PKCS7Verifier, VerificationResult

__all__ = [
    # Errors
    "PushCertError",
    "KeyGenerationError",
    "CertificateConstructionError",
    "ArmorDecodeError",
    "CardinalityError",
    "MissingPassphraseError",
    "UnexpectedPassphraseError",
    "KeyDecodeError",
    "TopicNotFoundError",
    "InvalidTopicError",
    "VerificationCheck",
    "VerificationError",
    "ValidityWindowError",
    # Issuance
    "generate_serial_number",
    "generate_self_signed",
    # Encoding
    "decode_certificates",
    "decode_certificate",
    "encode_certificate",
    "decode_key",
    "encode_key",
    # Topic
    "topic_from_certificate",
    # Verification
    "SignedEnvelope",
    "PKCS7Verifier",
    "VerificationResult",
]
