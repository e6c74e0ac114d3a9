"""
Push Topic Extraction

MDM push certificates carry their APNs topic (e.g. "com.apple.mgmt.External.<uuid>")
in the subject's UserID attribute.
"""

import logging

from cryptography import x509
from cryptography.x509.oid import ObjectIdentifier

from pushcert.core.crypto.errors import InvalidTopicError, TopicNotFoundError

logger = logging.getLogger(__name__)


# 0.9.2342.19200300.100.1.1 (RFC 4519 uid)
USER_ID_OID = ObjectIdentifier("0.9.2342.19200300.100.1.1")

TOPIC_PREFIX = "com.apple.mgmt"


def topic_from_certificate(certificate: x509.Certificate) -> str:
    """
    Extract the push topic from a certificate.

    Only the first UserID attribute in subject order is considered.

    Args:
        certificate: Push certificate

    Returns:
        The topic string, verbatim

    Raises:
        TopicNotFoundError: If the subject has no UserID attribute
        InvalidTopicError: If the UserID is not text starting with "com.apple.mgmt"
    """
    for attribute in certificate.subject:
        if attribute.oid != USER_ID_OID:
            continue
        value = attribute.value
        if isinstance(value, str) and value.startswith(TOPIC_PREFIX):
            return value
        logger.warning(f"Certificate serial {certificate.serial_number:x} has invalid push topic: {value!r}")
        raise InvalidTopicError(value)

    raise TopicNotFoundError("could not find push topic (UserID OID) in certificate")
