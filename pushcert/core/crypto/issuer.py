"""
Self-Signed Certificate Issuance

Generates a 2048-bit RSA key and a self-signed leaf certificate over it,
suitable for TLS server use (serverAuth) during development and enrollment.
"""

import datetime
import logging
from typing import Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from pushcert.core.crypto.entropy import RandomSource, system_random
from pushcert.core.crypto.errors import CertificateConstructionError, KeyGenerationError

logger = logging.getLogger(__name__)


RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537

# Serial numbers are drawn uniformly from [0, 2^128)
SERIAL_NUMBER_LIMIT = 1 << 128


def generate_serial_number(random_source: Optional[RandomSource] = None) -> int:
    """
    Draw a random 128-bit certificate serial number.

    Args:
        random_source: Source to draw from (default: OS CSPRNG)

    Returns:
        Integer in [0, 2^128)

    Raises:
        KeyGenerationError: If the random source fails or misbehaves
    """
    random_source = random_source or system_random
    try:
        serial = random_source.randbelow(SERIAL_NUMBER_LIMIT)
    except Exception as e:
        raise KeyGenerationError(f"failed to draw serial number: {e}") from e
    if not 0 <= serial < SERIAL_NUMBER_LIMIT:
        raise KeyGenerationError(f"random source returned out-of-range serial: {serial}")
    return serial


def generate_self_signed(
    common_name: str,
    days: int,
    random_source: Optional[RandomSource] = None,
) -> Tuple[rsa.RSAPrivateKey, x509.Certificate]:
    """
    Generate an RSA key and a self-signed certificate for it.

    The certificate has CN and a DNS SAN of common_name, is valid from now for
    the given number of days, allows digital signature and key encipherment,
    and is a non-CA leaf with serverAuth extended key usage.

    Args:
        common_name: Subject common name and DNS name
        days: Validity period in days (must be positive)
        random_source: Source for the serial number (default: OS CSPRNG)

    Returns:
        Tuple of (private_key, certificate)

    Raises:
        KeyGenerationError: Key or serial generation failed
        CertificateConstructionError: Building or signing the certificate failed

    Example:
        >>> key, cert = generate_self_signed("mdm.example.com", 365)
        >>> pem = encode_certificate(cert)
    """
    if days <= 0:
        raise CertificateConstructionError(f"validity must be at least one day, got {days}")

    try:
        private_key = rsa.generate_private_key(
            public_exponent=RSA_PUBLIC_EXPONENT,
            key_size=RSA_KEY_SIZE,
        )
    except Exception as e:
        raise KeyGenerationError(f"failed to generate RSA key: {e}") from e

    serial_number = generate_serial_number(random_source)

    try:
        # X.509 stores whole seconds; truncate so NotAfter - NotBefore is exact
        not_before = datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)
        not_after = not_before + datetime.timedelta(days=days)

        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
        certificate = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(private_key.public_key())
            .serial_number(serial_number)
            .not_valid_before(not_before)
            .not_valid_after(not_after)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]),
                critical=False,
            )
            .add_extension(
                x509.BasicConstraints(ca=False, path_length=None),
                critical=True,
            )
            .add_extension(
                x509.SubjectAlternativeName([x509.DNSName(common_name)]),
                critical=False,
            )
            .sign(private_key, hashes.SHA256())
        )
    except (ValueError, TypeError, OverflowError) as e:
        raise CertificateConstructionError(f"failed to build certificate for '{common_name}': {e}") from e

    logger.info(
        f"Issued self-signed certificate CN={common_name} serial={serial_number:x} "
        f"valid until {not_after.isoformat()}"
    )
    return private_key, certificate
