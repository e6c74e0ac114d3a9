"""
Unit tests for PEM block scanning, encoding and legacy PEM encryption.
"""
import base64

import pytest
from asn1crypto import pem

from pushcert.core.crypto.armor import (
    AES_256_CBC,
    DES_CBC,
    DES_EDE3_CBC,
    PEM_CIPHERS,
    PEMBlock,
    decode_blocks,
    decrypt_block,
    derive_pem_key,
    encode_block,
    encrypt_block,
    get_pem_cipher,
    iter_blocks,
)
from pushcert.core.crypto.errors import ArmorDecodeError, KeyDecodeError


class TestEncodeBlock:
    """Test PEM text framing."""

    def test_plain_block_layout(self):
        """Body is base64 wrapped at 64 columns between BEGIN/END lines."""
        data = bytes(range(256))
        pem = encode_block(PEMBlock(type="CERTIFICATE", data=data)).decode("ascii")
        lines = pem.splitlines()

        assert lines[0] == "-----BEGIN CERTIFICATE-----"
        assert lines[-1] == "-----END CERTIFICATE-----"
        assert pem.endswith("\n")
        assert all(len(line) == 64 for line in lines[1:-2])
        assert 0 < len(lines[-2]) <= 64
        assert base64.b64decode("".join(lines[1:-1])) == data

    def test_headers_followed_by_blank_line(self):
        """Headers are written in order, then a blank line, then the body."""
        block = PEMBlock(
            type="RSA PRIVATE KEY",
            data=b"\x01\x02\x03",
            headers={"Proc-Type": "4,ENCRYPTED", "DEK-Info": "DES-EDE3-CBC,0011223344556677"},
        )
        lines = encode_block(block).decode("ascii").splitlines()

        assert lines[1] == "Proc-Type: 4,ENCRYPTED"
        assert lines[2] == "DEK-Info: DES-EDE3-CBC,0011223344556677"
        assert lines[3] == ""
        assert lines[4] == base64.b64encode(b"\x01\x02\x03").decode("ascii")

    def test_headers_survive_unarmor(self):
        """Encrypted-key headers come back intact through asn1crypto's reader."""
        block = PEMBlock(
            type="RSA PRIVATE KEY",
            data=b"\x01\x02\x03",
            headers={"Proc-Type": "4,ENCRYPTED", "DEK-Info": "AES-128-CBC,00112233445566778899AABBCCDDEEFF"},
        )
        block_type, headers, data = pem.unarmor(encode_block(block))

        assert (block_type, dict(headers), data) == (block.type, block.headers, block.data)

    def test_empty_payload(self):
        """Empty payload produces just the BEGIN/END lines."""
        pem = encode_block(PEMBlock(type="CERTIFICATE", data=b""))
        assert pem == b"-----BEGIN CERTIFICATE-----\n-----END CERTIFICATE-----\n"


class TestScanBlocks:
    """Test strict scanning."""

    def test_multiple_blocks_with_whitespace(self):
        """Whitespace around and between blocks is allowed."""
        first = encode_block(PEMBlock(type="CERTIFICATE", data=b"one"))
        second = encode_block(PEMBlock(type="CERTIFICATE", data=b"two"))
        blocks = decode_blocks(b"\n  " + first + b"\n\n" + second + b"  \n")

        assert [b.data for b in blocks] == [b"one", b"two"]

    def test_headers_parsed(self):
        """Headers survive a decode."""
        block = PEMBlock(type="RSA PRIVATE KEY", data=b"abc", headers={"Proc-Type": "4,ENCRYPTED"})
        decoded = decode_blocks(encode_block(block))[0]

        assert decoded.headers == {"Proc-Type": "4,ENCRYPTED"}
        assert decoded.data == b"abc"

    def test_crlf_line_endings(self):
        """Windows line endings decode like Unix ones."""
        pem = encode_block(PEMBlock(type="CERTIFICATE", data=b"payload")).replace(b"\n", b"\r\n")
        assert decode_blocks(pem)[0].data == b"payload"

    def test_leading_garbage_rejected(self):
        """Text before the first block is not skipped."""
        pem = b"hello\n" + encode_block(PEMBlock(type="CERTIFICATE", data=b"x"))
        with pytest.raises(ArmorDecodeError):
            decode_blocks(pem)

    def test_trailing_garbage_rejected(self):
        """Garbage after a valid block fails the whole scan."""
        pem = encode_block(PEMBlock(type="CERTIFICATE", data=b"x")) + b"not pem at all\n"
        with pytest.raises(ArmorDecodeError):
            decode_blocks(pem)

    def test_iterator_yields_then_fails(self):
        """Blocks before the bad segment are yielded, then scanning stops with an error."""
        pem = encode_block(PEMBlock(type="CERTIFICATE", data=b"x")) + b"garbage"
        iterator = iter_blocks(pem)

        assert next(iterator).data == b"x"
        with pytest.raises(ArmorDecodeError):
            next(iterator)

    def test_truncated_block_rejected(self):
        """A block without its END line is an error."""
        pem = encode_block(PEMBlock(type="CERTIFICATE", data=b"x" * 100))
        with pytest.raises(ArmorDecodeError):
            decode_blocks(pem[:-30])

    def test_mismatched_end_label_rejected(self):
        """END label must match BEGIN label."""
        pem = b"-----BEGIN CERTIFICATE-----\neA==\n-----END RSA PRIVATE KEY-----\n"
        with pytest.raises(ArmorDecodeError):
            decode_blocks(pem)

    def test_invalid_base64_rejected(self):
        """Non-base64 characters in the body are an error."""
        pem = b"-----BEGIN CERTIFICATE-----\n!!!notbase64!!!\n-----END CERTIFICATE-----\n"
        with pytest.raises(ArmorDecodeError, match="base64"):
            decode_blocks(pem)

    def test_expected_type_enforced(self):
        """A block of another type fails a typed decode."""
        pem = encode_block(PEMBlock(type="CERTIFICATE", data=b"x")) + encode_block(
            PEMBlock(type="RSA PRIVATE KEY", data=b"y")
        )
        with pytest.raises(ArmorDecodeError, match="RSA PRIVATE KEY"):
            decode_blocks(pem, expected_type="CERTIFICATE")

    def test_empty_input_rejected(self):
        """No blocks at all is an error."""
        with pytest.raises(ArmorDecodeError):
            decode_blocks(b"  \n")

    def test_non_ascii_rejected(self):
        with pytest.raises(ArmorDecodeError):
            decode_blocks("-----BEGIN CERTIFICATE-----\né\n".encode("utf-8"))


class TestLegacyEncryption:
    """Test RFC 1423 style block encryption."""

    def test_derive_key_matches_evp_bytes_to_key(self):
        """Key derivation chains MD5(prev || pass || salt) blocks."""
        import hashlib

        salt = bytes(range(8))
        d1 = hashlib.md5(b"secret" + salt).digest()
        d2 = hashlib.md5(d1 + b"secret" + salt).digest()

        assert derive_pem_key(b"secret", salt, 24) == (d1 + d2)[:24]
        assert derive_pem_key(b"secret", salt, 16) == d1

    def test_default_headers(self, seeded_random):
        """Encrypted blocks carry Proc-Type then DEK-Info with uppercase hex IV."""
        block = encrypt_block("RSA PRIVATE KEY", b"secret der", b"pass", random_source=seeded_random)

        assert list(block.headers) == ["Proc-Type", "DEK-Info"]
        assert block.headers["Proc-Type"] == "4,ENCRYPTED"
        name, iv_hex = block.headers["DEK-Info"].split(",")
        assert name == "DES-EDE3-CBC"
        assert iv_hex == iv_hex.upper()
        assert len(bytes.fromhex(iv_hex)) == 8
        assert block.is_encrypted

    @pytest.mark.parametrize("cipher", list(PEM_CIPHERS.values()), ids=list(PEM_CIPHERS))
    def test_decrypt_recovers_payload(self, cipher, seeded_random):
        """Every supported cipher decrypts its own output."""
        payload = b"0" * 37
        block = encrypt_block("RSA PRIVATE KEY", payload, b"pass", cipher=cipher, random_source=seeded_random)

        assert len(block.data) % cipher.block_size == 0
        assert decrypt_block(block, b"pass") == payload

    def test_unknown_cipher(self):
        block = PEMBlock(
            type="RSA PRIVATE KEY",
            data=b"\x00" * 16,
            headers={"Proc-Type": "4,ENCRYPTED", "DEK-Info": "RC2-CBC,0011223344556677"},
        )
        with pytest.raises(KeyDecodeError, match="DEK-Info"):
            decrypt_block(block, b"pass")

    def test_bad_iv_length(self):
        block = PEMBlock(
            type="RSA PRIVATE KEY",
            data=b"\x00" * 16,
            headers={"DEK-Info": "AES-256-CBC,0011223344556677"},
        )
        with pytest.raises(KeyDecodeError, match="IV"):
            decrypt_block(block, b"pass")

    def test_ragged_ciphertext(self):
        block = PEMBlock(
            type="RSA PRIVATE KEY",
            data=b"\x00" * 13,
            headers={"DEK-Info": "DES-EDE3-CBC,0011223344556677"},
        )
        with pytest.raises(KeyDecodeError):
            decrypt_block(block, b"pass")

    def test_get_pem_cipher(self):
        assert get_pem_cipher("aes-256-cbc") is AES_256_CBC
        assert get_pem_cipher("DES-EDE3-CBC") is DES_EDE3_CBC
        assert get_pem_cipher("DES-CBC") is DES_CBC
        with pytest.raises(ValueError, match="Unsupported"):
            get_pem_cipher("BF-CBC")
