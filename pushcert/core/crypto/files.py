"""
PEM File Helpers

Thin file wrappers around the encoders in keys.py. Files are opened in `with`
blocks so handles are released on every exit path; key files are created
owner read/write only.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple, Union

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from pushcert.core.config import Settings, get_settings
from pushcert.core.crypto.armor import DEFAULT_PEM_CIPHER, PEMCipher
from pushcert.core.crypto.issuer import generate_self_signed
from pushcert.core.crypto.keys import (
    decode_certificate,
    decode_certificates,
    decode_key,
    encode_certificate,
    encode_key,
)

logger = logging.getLogger(__name__)

KEY_FILE_MODE = 0o600

PathLike = Union[str, Path]


def read_certificates_file(path: PathLike) -> List[x509.Certificate]:
    """Read all certificates from a PEM file."""
    return decode_certificates(Path(path).read_bytes())


def read_certificate_file(path: PathLike) -> x509.Certificate:
    """Read a PEM file holding exactly one certificate."""
    return decode_certificate(Path(path).read_bytes())


def read_key_file(path: PathLike, passphrase: Optional[bytes] = None) -> RSAPrivateKey:
    """
    Read an RSA key from a PEM file.

    Args:
        path: Path to key file
        passphrase: Passphrase if the file is encrypted

    Raises:
        FileNotFoundError: If file doesn't exist
        MissingPassphraseError, UnexpectedPassphraseError, KeyDecodeError: See decode_key
    """
    return decode_key(Path(path).read_bytes(), passphrase=passphrase)


def write_certificate_file(path: PathLike, certificate: x509.Certificate) -> Path:
    """Write a certificate as PEM, replacing any existing file."""
    path = Path(path)
    with open(path, "wb") as f:
        f.write(encode_certificate(certificate))
    logger.debug(f"Wrote certificate to {path}")
    return path


def write_key_file(
    path: PathLike,
    key: RSAPrivateKey,
    passphrase: Optional[bytes] = None,
    cipher: Union[PEMCipher, str] = DEFAULT_PEM_CIPHER,
) -> Path:
    """
    Write an RSA key as PEM, encrypted if a passphrase is given.

    The file is created (or truncated) with mode 0600 before any key bytes
    are written.

    WARNING: Without a passphrase the key is stored in the clear.
    """
    path = Path(path)
    data = encode_key(key, passphrase=passphrase, cipher=cipher)

    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, KEY_FILE_MODE)
    with os.fdopen(fd, "wb") as f:
        f.write(data)
    os.chmod(path, KEY_FILE_MODE)  # Owner read/write only, even if the file existed
    logger.debug(f"Wrote RSA key to {path} (encrypted={passphrase is not None})")
    return path


def save_self_signed(
    directory: PathLike,
    common_name: str,
    name: str = "server",
    days: Optional[int] = None,
    passphrase: Optional[bytes] = None,
    settings: Optional[Settings] = None,
) -> Tuple[Path, Path]:
    """
    Issue a self-signed certificate and save it with its key.

    Creates two files:
    - {name}.crt (certificate, PEM)
    - {name}.key (RSA key, PEM, mode 0600, encrypted with Settings.key_cipher
      when a passphrase is given)

    Args:
        directory: Directory to save files in (created if missing)
        common_name: Subject common name and DNS name
        name: Base name for the files
        days: Validity in days (default: Settings.default_validity_days)
        passphrase: Encrypt the key file with this passphrase if given
        settings: Settings to use instead of the global instance

    Returns:
        Tuple of (certificate_path, key_path)
    """
    settings = settings or get_settings()
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    key, certificate = generate_self_signed(common_name, days or settings.default_validity_days)

    certificate_path = write_certificate_file(directory / f"{name}.crt", certificate)
    key_path = write_key_file(directory / f"{name}.key", key, passphrase=passphrase, cipher=settings.key_cipher)
    logger.info(f"Saved self-signed certificate for {common_name} to {certificate_path}")
    return certificate_path, key_path
