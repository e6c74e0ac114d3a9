"""
Shared fixtures: RSA keys, certificate builders, deterministic randomness
and a frozen clock.
"""
import datetime
import random

import pytest
from asn1crypto import cms
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs7
from cryptography.x509.oid import NameOID

from pushcert.core.crypto.topic import USER_ID_OID


NOW = datetime.datetime(2026, 3, 1, 12, 0, 0, tzinfo=datetime.timezone.utc)


class SeededRandomSource:
    """Deterministic stand-in for the OS random source."""

    def __init__(self, seed: int = 0):
        self._random = random.Random(seed)
        self.calls = 0

    def token_bytes(self, n: int) -> bytes:
        self.calls += 1
        return self._random.randbytes(n)

    def randbelow(self, upper: int) -> int:
        self.calls += 1
        return self._random.randrange(upper)


def make_name(common_name: str, user_id=None) -> x509.Name:
    attributes = [x509.NameAttribute(NameOID.COMMON_NAME, common_name)]
    if user_id is not None:
        attributes.append(x509.NameAttribute(USER_ID_OID, user_id))
    return x509.Name(attributes)


def tamper_signature(der: bytes, serial_number=None) -> bytes:
    """Flip one bit of a signer's signature (the first signer unless a serial number is given)."""
    signer_infos = cms.ContentInfo.load(der)["content"]["signer_infos"]
    signer_info = signer_infos[0]
    if serial_number is not None:
        signer_info = next(
            info for info in signer_infos
            if info["sid"].chosen["serial_number"].native == serial_number
        )
    signature = signer_info["signature"].native
    end = der.rindex(signature) + len(signature)
    return der[:end - 1] + bytes([der[end - 1] ^ 0x01]) + der[end:]


def sign_with_signers(payload: bytes, signers) -> bytes:
    """Attached SignedData with one SignerInfo per (certificate, key) pair."""
    builder = pkcs7.PKCS7SignatureBuilder().set_data(payload)
    for certificate, key in signers:
        builder = builder.add_signer(certificate, key, hashes.SHA256())
    return builder.sign(serialization.Encoding.DER, [pkcs7.PKCS7Options.Binary])


def build_certificate(
    key,
    subject: x509.Name,
    issuer_cert=None,
    issuer_key=None,
    not_before=None,
    not_after=None,
    ca: bool = False,
):
    """Build a certificate for key, self-signed unless an issuer is given."""
    not_before = not_before or NOW - datetime.timedelta(days=1)
    not_after = not_after or NOW + datetime.timedelta(days=30)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer_cert.subject if issuer_cert is not None else subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
    )
    return builder.sign(issuer_key or key, hashes.SHA256())


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ca_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def seeded_random():
    return SeededRandomSource(seed=42)


@pytest.fixture
def frozen_clock():
    return lambda: NOW


@pytest.fixture
def device_cert(rsa_key):
    """Self-signed device certificate valid around NOW."""
    return build_certificate(rsa_key, make_name("device-0001"))


@pytest.fixture
def ca_cert(ca_key):
    return build_certificate(ca_key, make_name("Test MDM CA"), ca=True)


@pytest.fixture
def leaf_cert(rsa_key, ca_cert, ca_key):
    """Device certificate issued by ca_cert."""
    return build_certificate(rsa_key, make_name("device-0002"), issuer_cert=ca_cert, issuer_key=ca_key)
