"""
PEM Armor

Strict scanning and encoding of PEM blocks, plus the legacy PEM encryption
convention (RFC 1423 / OpenSSL "Proc-Type: 4,ENCRYPTED") used for RSA key
blocks.

Block layout:
    -----BEGIN <TYPE>-----
    Name: value            (optional headers)
                           (blank line after headers)
    base64 body, 64 columns
    -----END <TYPE>-----

Blocks are written with asn1crypto.pem.armor. Scanning is done here and is
strict: only whitespace may appear between blocks. Anything else (garbage,
truncated blocks, bad base64) raises ArmorDecodeError instead of being
skipped, which asn1crypto.pem.unarmor does not guarantee.
"""

import base64
import binascii
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional

from asn1crypto import pem
from cryptography.hazmat.decrepit.ciphers.algorithms import TripleDES
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, CipherAlgorithm, algorithms, modes

from pushcert.core.crypto.entropy import RandomSource, system_random
from pushcert.core.crypto.errors import ArmorDecodeError, KeyDecodeError

logger = logging.getLogger(__name__)


CERTIFICATE_BLOCK_TYPE = "CERTIFICATE"
RSA_PRIVATE_KEY_BLOCK_TYPE = "RSA PRIVATE KEY"

# Body line width used by OpenSSL and Go's encoding/pem
LINE_LENGTH = 64

_BLOCK_RE = re.compile(
    r"-----BEGIN (?P<type>[^-\r\n]+)-----[ \t]*\r?\n"
    r"(?P<body>.*?)"
    r"-----END (?P=type)-----[ \t]*(?:\r?\n|\Z)",
    re.DOTALL,
)
_WHITESPACE_RE = re.compile(r"\s*")


@dataclass(frozen=True)
class PEMBlock:
    """
    A single armored block.

    Attributes:
        type: Type label from the BEGIN/END lines (e.g. "CERTIFICATE")
        data: Decoded binary payload
        headers: RFC 1421 headers in file order (empty for plain blocks)
    """
    type: str
    data: bytes
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def is_encrypted(self) -> bool:
        """True if the block carries legacy PEM encryption metadata."""
        return "DEK-Info" in self.headers


def encode_block(block: PEMBlock) -> bytes:
    """
    Encode a block to PEM text.

    Args:
        block: Block to encode

    Returns:
        ASCII bytes ending with a newline
    """
    return pem.armor(block.type, block.data, headers=block.headers or None)


def _parse_body(block_type: str, body: str) -> PEMBlock:
    lines = body.splitlines()
    headers: Dict[str, str] = {}

    index = 0
    while index < len(lines) and ":" in lines[index]:
        name, value = lines[index].split(":", 1)
        headers[name.strip()] = value.strip()
        index += 1
    if headers and index < len(lines) and not lines[index].strip():
        index += 1

    encoded = "".join(line.strip() for line in lines[index:])
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ArmorDecodeError(f"invalid base64 body in {block_type} block: {e}") from e

    return PEMBlock(type=block_type, data=data, headers=headers)


def iter_blocks(data: bytes) -> Iterator[PEMBlock]:
    """
    Scan PEM data block by block.

    Yields each block as soon as it is parsed. Raises ArmorDecodeError at the
    first position that is neither whitespace nor a complete block, so a
    consumer can never mistake a partially scanned input for a full one if it
    exhausts the iterator.

    Args:
        data: PEM-encoded bytes

    Raises:
        ArmorDecodeError: If the input contains anything but whitespace-separated blocks
    """
    try:
        text = data.decode("ascii")
    except UnicodeDecodeError as e:
        raise ArmorDecodeError(f"PEM data is not ASCII: {e}") from e

    pos = _WHITESPACE_RE.match(text).end()
    while pos < len(text):
        match = _BLOCK_RE.match(text, pos)
        if match is None:
            raise ArmorDecodeError(f"failed to decode PEM block at offset {pos}")
        yield _parse_body(match.group("type"), match.group("body"))
        pos = _WHITESPACE_RE.match(text, match.end()).end()


def decode_blocks(data: bytes, expected_type: Optional[str] = None) -> List[PEMBlock]:
    """
    Decode all blocks, optionally requiring a single type label.

    Args:
        data: PEM-encoded bytes
        expected_type: If set, every block must carry this type

    Returns:
        Non-empty list of blocks

    Raises:
        ArmorDecodeError: On malformed input, a mistyped block, or no blocks at all
    """
    blocks = []
    for block in iter_blocks(data):
        if expected_type is not None and block.type != expected_type:
            raise ArmorDecodeError(
                f"expecting PEM type of {expected_type}, but got {block.type}"
            )
        blocks.append(block)
    if not blocks:
        raise ArmorDecodeError("no PEM block found")
    return blocks


# ============================================================================
# Legacy PEM encryption
# ============================================================================

@dataclass(frozen=True)
class PEMCipher:
    """A cipher usable in a DEK-Info header."""
    name: str
    key_size: int
    block_size: int
    algorithm: Callable[[bytes], CipherAlgorithm]


DES_CBC = PEMCipher("DES-CBC", 8, 8, TripleDES)
# Legacy and kept only for compatibility with existing tooling; prefer AES for new deployments
DES_EDE3_CBC = PEMCipher("DES-EDE3-CBC", 24, 8, TripleDES)
AES_128_CBC = PEMCipher("AES-128-CBC", 16, 16, algorithms.AES)
AES_192_CBC = PEMCipher("AES-192-CBC", 24, 16, algorithms.AES)
AES_256_CBC = PEMCipher("AES-256-CBC", 32, 16, algorithms.AES)

PEM_CIPHERS: Dict[str, PEMCipher] = {
    c.name: c for c in (DES_CBC, DES_EDE3_CBC, AES_128_CBC, AES_192_CBC, AES_256_CBC)
}

DEFAULT_PEM_CIPHER = DES_EDE3_CBC


def get_pem_cipher(name: str) -> PEMCipher:
    """
    Look up a cipher by its DEK-Info name.

    Raises:
        ValueError: If the cipher is not supported
    """
    try:
        return PEM_CIPHERS[name.upper()]
    except KeyError:
        raise ValueError(
            f"Unsupported PEM cipher: {name} (supported: {', '.join(PEM_CIPHERS)})"
        ) from None


def derive_pem_key(passphrase: bytes, salt: bytes, key_size: int) -> bytes:
    """
    OpenSSL EVP_BytesToKey with MD5 and a single iteration.

    Args:
        passphrase: Passphrase bytes
        salt: First 8 bytes of the IV
        key_size: Cipher key length in bytes
    """
    derived = b""
    previous = b""
    while len(derived) < key_size:
        digest = hashes.Hash(hashes.MD5())
        digest.update(previous)
        digest.update(passphrase)
        digest.update(salt)
        previous = digest.finalize()
        derived += previous
    return derived[:key_size]


def encrypt_block(
    block_type: str,
    data: bytes,
    passphrase: bytes,
    cipher: PEMCipher = DEFAULT_PEM_CIPHER,
    random_source: Optional[RandomSource] = None,
) -> PEMBlock:
    """
    Encrypt a payload into a legacy encrypted PEM block.

    Args:
        block_type: Type label of the resulting block
        data: Plain DER payload
        passphrase: Passphrase bytes
        cipher: DEK-Info cipher (default DES-EDE3-CBC)
        random_source: Source for the IV (default: OS CSPRNG)

    Returns:
        PEMBlock with Proc-Type and DEK-Info headers
    """
    random_source = random_source or system_random
    iv = random_source.token_bytes(cipher.block_size)
    key = derive_pem_key(passphrase, iv[:8], cipher.key_size)

    padder = padding.PKCS7(cipher.block_size * 8).padder()
    padded = padder.update(data) + padder.finalize()
    encryptor = Cipher(cipher.algorithm(key), modes.CBC(iv)).encryptor()
    encrypted = encryptor.update(padded) + encryptor.finalize()

    return PEMBlock(
        type=block_type,
        data=encrypted,
        headers={
            "Proc-Type": "4,ENCRYPTED",
            "DEK-Info": f"{cipher.name},{iv.hex().upper()}",
        },
    )


def decrypt_block(block: PEMBlock, passphrase: bytes) -> bytes:
    """
    Decrypt a legacy encrypted PEM block.

    Args:
        block: Block with a DEK-Info header
        passphrase: Passphrase bytes

    Returns:
        Plain DER payload

    Raises:
        KeyDecodeError: On unknown cipher, bad IV, or wrong passphrase
    """
    dek_info = block.headers.get("DEK-Info")
    if dek_info is None:
        raise KeyDecodeError("PEM block is not encrypted")

    name, _, iv_hex = dek_info.partition(",")
    try:
        cipher = get_pem_cipher(name.strip())
        iv = bytes.fromhex(iv_hex.strip())
    except ValueError as e:
        raise KeyDecodeError(f"invalid DEK-Info header '{dek_info}': {e}") from e
    if len(iv) != cipher.block_size:
        raise KeyDecodeError(f"incorrect IV size for {cipher.name}: {len(iv)} bytes")
    if not block.data or len(block.data) % cipher.block_size:
        raise KeyDecodeError("encrypted PEM data is not a multiple of the block size")

    key = derive_pem_key(passphrase, iv[:8], cipher.key_size)
    decryptor = Cipher(cipher.algorithm(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(block.data) + decryptor.finalize()

    unpadder = padding.PKCS7(cipher.block_size * 8).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as e:
        raise KeyDecodeError("decryption password incorrect") from e
