"""
Certificate and RSA Key Encoding

Encodes and decodes X.509 certificates and PKCS#1 RSA private keys to and from
PEM text. Key blocks may be protected with the legacy PEM encryption
convention (DES-EDE3-CBC by default, AES on request).

Uses the cryptography library for X.509 and key (de)serialization, and
asn1crypto to split concatenated DER certificates.
"""

import logging
from typing import List, Optional, Union

from asn1crypto import keys as asn1_keys
from asn1crypto import parser as asn1_parser
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from pushcert.core.crypto.armor import (
    CERTIFICATE_BLOCK_TYPE,
    DEFAULT_PEM_CIPHER,
    RSA_PRIVATE_KEY_BLOCK_TYPE,
    PEMBlock,
    PEMCipher,
    decode_blocks,
    decrypt_block,
    encode_block,
    encrypt_block,
    get_pem_cipher,
)
from pushcert.core.crypto.entropy import RandomSource
from pushcert.core.crypto.errors import (
    ArmorDecodeError,
    CardinalityError,
    KeyDecodeError,
    MissingPassphraseError,
    UnexpectedPassphraseError,
)

logger = logging.getLogger(__name__)


def split_der(data: bytes) -> List[bytes]:
    """
    Split a buffer of concatenated DER elements.

    Args:
        data: Zero or more DER-encoded top-level elements back to back

    Returns:
        List of DER encodings, one per element

    Raises:
        ValueError: If an element is truncated or malformed
    """
    elements = []
    offset = 0
    while offset < len(data):
        _, _, _, header, contents, trailer = asn1_parser.parse(data[offset:])
        length = len(header) + len(contents) + len(trailer)
        elements.append(data[offset:offset + length])
        offset += length
    return elements


def decode_certificates(data: bytes) -> List[x509.Certificate]:
    """
    Decode one or more PEM certificates.

    Block payloads are concatenated first and the combined DER buffer is then
    parsed as a sequence of certificates, so every block must be a
    CERTIFICATE block.

    Args:
        data: PEM text containing only CERTIFICATE blocks

    Returns:
        Certificates in file order

    Raises:
        ArmorDecodeError: If a block is malformed or mistyped, or the DER is invalid
    """
    blocks = decode_blocks(data, expected_type=CERTIFICATE_BLOCK_TYPE)
    der = b"".join(block.data for block in blocks)

    try:
        certificates = [x509.load_der_x509_certificate(element) for element in split_der(der)]
    except ValueError as e:
        raise ArmorDecodeError(f"failed to parse certificate DER: {e}") from e

    logger.debug(f"Decoded {len(certificates)} certificate(s) from {len(blocks)} PEM block(s)")
    return certificates


def decode_certificate(data: bytes) -> x509.Certificate:
    """
    Decode exactly one PEM certificate.

    Raises:
        ArmorDecodeError: If the PEM data is invalid
        CardinalityError: If the data holds zero or several certificates
    """
    certificates = decode_certificates(data)
    if len(certificates) != 1:
        raise CardinalityError(len(certificates))
    return certificates[0]


def encode_certificate(certificate: x509.Certificate) -> bytes:
    """
    Encode a certificate as a single CERTIFICATE block.

    The payload is the certificate's original DER, byte for byte.
    """
    der = certificate.public_bytes(serialization.Encoding.DER)
    return encode_block(PEMBlock(type=CERTIFICATE_BLOCK_TYPE, data=der))


def decode_key(data: bytes, passphrase: Optional[bytes] = None) -> RSAPrivateKey:
    """
    Decode a PEM "RSA PRIVATE KEY" block, decrypting it if needed.

    A passphrase must be given for encrypted blocks and must not be given for
    plain ones. Either mismatch is an error.

    Args:
        data: PEM text holding exactly one RSA PRIVATE KEY block
        passphrase: Passphrase for an encrypted block, or None

    Returns:
        RSA private key

    Raises:
        MissingPassphraseError: Block is encrypted and passphrase is None
        UnexpectedPassphraseError: Block is plain and a passphrase was given
        KeyDecodeError: Framing, decryption or PKCS#1 parsing failed
    """
    try:
        blocks = decode_blocks(data)
    except ArmorDecodeError as e:
        raise KeyDecodeError(f"PEM decode failed: {e}") from e
    if len(blocks) != 1:
        raise KeyDecodeError(f"expected a single PEM block, found {len(blocks)}")

    block = blocks[0]
    if block.type != RSA_PRIVATE_KEY_BLOCK_TYPE:
        raise KeyDecodeError(
            f"expecting PEM type of {RSA_PRIVATE_KEY_BLOCK_TYPE}, but got {block.type}"
        )

    if block.is_encrypted:
        if passphrase is None:
            raise MissingPassphraseError("no supplied passphrase for encrypted PEM")
        der = decrypt_block(block, passphrase)
    elif passphrase is not None:
        raise UnexpectedPassphraseError("supplied PEM passphrase, but block is not encrypted")
    else:
        der = block.data

    try:
        # PKCS#1 RSAPrivateKey only; load_der_private_key would also take PKCS#8
        asn1_keys.RSAPrivateKey.load(der, strict=True).native
        key = serialization.load_der_private_key(der, password=None)
    except (ValueError, TypeError) as e:
        raise KeyDecodeError(f"failed to parse PKCS#1 private key: {e}") from e
    if not isinstance(key, RSAPrivateKey):
        raise KeyDecodeError(f"not an RSA key: {type(key).__name__}")

    logger.debug(f"Decoded {key.key_size}-bit RSA key (encrypted={block.is_encrypted})")
    return key


def encode_key(
    key: RSAPrivateKey,
    passphrase: Optional[bytes] = None,
    cipher: Union[PEMCipher, str] = DEFAULT_PEM_CIPHER,
    random_source: Optional[RandomSource] = None,
) -> bytes:
    """
    Encode an RSA key as a PKCS#1 "RSA PRIVATE KEY" block.

    WARNING: Without a passphrase the output holds the key in the clear.

    Args:
        key: RSA private key
        passphrase: Encrypt the block with this passphrase if given
        cipher: DEK-Info cipher or its name; DES-EDE3-CBC keeps compatibility
                with existing tooling, AES-*-CBC is the stronger opt-in
        random_source: Source for the encryption IV (default: OS CSPRNG)

    Returns:
        PEM bytes
    """
    der = key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    if passphrase is None:
        return encode_block(PEMBlock(type=RSA_PRIVATE_KEY_BLOCK_TYPE, data=der))

    if isinstance(cipher, str):
        cipher = get_pem_cipher(cipher)
    block = encrypt_block(
        RSA_PRIVATE_KEY_BLOCK_TYPE,
        der,
        passphrase,
        cipher=cipher,
        random_source=random_source,
    )
    return encode_block(block)
