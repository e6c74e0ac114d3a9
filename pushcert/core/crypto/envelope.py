"""
PKCS7 Signed Envelopes

Parses PKCS7/CMS SignedData (as sent by MDM clients in the Mdm-Signature
header or during SCEP/enrollment) and verifies it at a given instant.

Verification order (steps 1 and 2 run for every signer before any signer
reaches step 3):
    1. Structure: signer certificate present, supported algorithms
    2. Signature: message digest attribute and signature over the content
    3. Validity window: signer certificate valid at the reference time
    4. Chain (only with trust anchors): path to an anchor, every link valid
       at the reference time

Failures raise VerificationError with the check that failed; validity window
failures raise the ValidityWindowError subclass so callers can tell clock
problems apart from cryptographic ones.

Uses asn1crypto for the CMS structure and the cryptography library for
certificates and signature math.
"""

import datetime
import logging
from typing import List, Optional, Sequence

from asn1crypto import cms, core, pem
from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.serialization import pkcs7

from pushcert.core.crypto.errors import (
    ValidityWindowError,
    VerificationCheck,
    VerificationError,
)

logger = logging.getLogger(__name__)


PEM_BLOCK_TYPES = ("PKCS7", "CMS")

# Longest signer -> anchor path we are willing to walk
MAX_CHAIN_DEPTH = 10

_DIGEST_ALGORITHMS = {
    "sha1": hashes.SHA1,
    "sha224": hashes.SHA224,
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}


def _structure_error(message: str) -> VerificationError:
    return VerificationError(VerificationCheck.STRUCTURE, message)


def _as_utc(at: datetime.datetime) -> datetime.datetime:
    if at.tzinfo is None:
        return at.replace(tzinfo=datetime.timezone.utc)
    return at.astimezone(datetime.timezone.utc)


def check_validity_window(certificate: x509.Certificate, at: datetime.datetime) -> None:
    """
    Check that a certificate is valid at the given instant.

    Raises:
        ValidityWindowError: If at is before NotBefore or after NotAfter
    """
    at = _as_utc(at)
    not_before = certificate.not_valid_before_utc
    not_after = certificate.not_valid_after_utc
    if at < not_before or at > not_after:
        raise ValidityWindowError(
            f"reference time {at.isoformat()} is outside of certificate validity "
            f"{not_before.isoformat()} to {not_after.isoformat()} "
            f"({certificate.subject.rfc4514_string()})",
            not_before=not_before,
            not_after=not_after,
            at=at,
        )


def _is_ca(certificate: x509.Certificate) -> bool:
    try:
        constraints = certificate.extensions.get_extension_for_class(x509.BasicConstraints)
    except x509.ExtensionNotFound:
        return False
    return constraints.value.ca


def _find_issuer(
    certificate: x509.Certificate,
    candidates: Sequence[x509.Certificate],
) -> Optional[x509.Certificate]:
    for candidate in candidates:
        if candidate.subject != certificate.issuer or not _is_ca(candidate):
            continue
        try:
            certificate.verify_directly_issued_by(candidate)
        except (ValueError, TypeError, InvalidSignature, UnsupportedAlgorithm):
            continue
        return candidate
    return None


class SignedEnvelope:
    """
    A parsed PKCS7 SignedData envelope.

    Immutable after load; safe to share between threads.

    Attributes:
        content: Signed payload (attached or supplied for detached signatures)
        certificates: Certificates embedded in the envelope, in file order
    """

    def __init__(self, content_info: cms.ContentInfo, content: Optional[bytes] = None):
        try:
            if content_info["content_type"].native != "signed_data":
                raise _structure_error(
                    f"content type is {content_info['content_type'].native}, expected signed_data"
                )
            signed_data = content_info["content"]

            attached = signed_data["encap_content_info"]["content"].native
            if attached is not None and content is not None:
                raise _structure_error("detached content supplied for an envelope with attached content")
            self.content: bytes = attached if attached is not None else content
            if self.content is None:
                raise _structure_error("envelope has no content and none was supplied")

            self._asn1_certificates = []
            certificate_set = signed_data["certificates"]
            if not isinstance(certificate_set, core.Void):
                for choice in certificate_set:
                    if choice.name == "certificate":
                        self._asn1_certificates.append(choice.chosen)
            self.certificates: List[x509.Certificate] = [
                x509.load_der_x509_certificate(cert.dump()) for cert in self._asn1_certificates
            ]

            self._signer_infos = list(signed_data["signer_infos"])
        except VerificationError:
            raise
        except (ValueError, TypeError, KeyError) as e:
            raise _structure_error(f"malformed PKCS7 envelope: {e}") from e

        if not self._signer_infos:
            raise _structure_error("message has no signers")

    @classmethod
    def load(cls, data: bytes, content: Optional[bytes] = None) -> "SignedEnvelope":
        """
        Parse a DER or PEM encoded PKCS7 envelope.

        Args:
            data: DER bytes, or PEM with a PKCS7/CMS block
            content: Payload for a detached signature

        Raises:
            VerificationError: (STRUCTURE) if the envelope cannot be parsed
        """
        der = data
        # DER ContentInfo starts with a SEQUENCE tag; its payload may itself hold PEM text
        if not data.startswith(b"\x30") and pem.detect(data):
            try:
                blocks = list(pem.unarmor(data, multiple=True))
            except ValueError as e:
                raise _structure_error(f"invalid PEM envelope: {e}") from e
            if len(blocks) != 1 or blocks[0][0] not in PEM_BLOCK_TYPES:
                raise _structure_error("expected a single PKCS7 PEM block")
            der = blocks[0][2]

        try:
            content_info = cms.ContentInfo.load(der, strict=True)
        except (ValueError, TypeError) as e:
            raise _structure_error(f"malformed PKCS7 envelope: {e}") from e
        return cls(content_info, content=content)

    @property
    def signer_certificate(self) -> x509.Certificate:
        """Certificate of the first signer."""
        return self._signer_certificate(self._signer_infos[0])

    def _signer_certificate(self, signer_info: cms.SignerInfo) -> x509.Certificate:
        sid = signer_info["sid"]
        for asn1_cert, certificate in zip(self._asn1_certificates, self.certificates):
            if sid.name == "issuer_and_serial_number":
                if (
                    asn1_cert.serial_number == sid.chosen["serial_number"].native
                    and asn1_cert.issuer == sid.chosen["issuer"]
                ):
                    return certificate
            elif asn1_cert.key_identifier == sid.chosen.native:
                return certificate
        raise _structure_error("no certificate for signer")

    def verify_at(
        self,
        trust_anchors: Optional[Sequence[x509.Certificate]],
        at: datetime.datetime,
    ) -> None:
        """
        Verify every signer's signature and certificate at a given instant.

        Args:
            trust_anchors: Anchor certificates; None skips chain building
            at: Reference time for certificate validity checks

        Raises:
            VerificationError: With the failed check (STRUCTURE, SIGNATURE, CHAIN)
            ValidityWindowError: If a certificate is not valid at `at`
        """
        signers = []
        for signer_info in self._signer_infos:
            try:
                signer = self._signer_certificate(signer_info)
                self._verify_signature(signer_info, signer)
            except (ValueError, TypeError, KeyError) as e:
                raise _structure_error(f"malformed signer info: {e}") from e
            signers.append(signer)

        # Validity and chain only once every signature is known good
        for signer in signers:
            check_validity_window(signer, at)
            if trust_anchors is not None:
                self._verify_chain(signer, trust_anchors, at)

        logger.debug(f"PKCS7 envelope verified at {_as_utc(at).isoformat()}")

    def _verify_signature(self, signer_info: cms.SignerInfo, signer: x509.Certificate) -> None:
        digest_name = signer_info["digest_algorithm"]["algorithm"].native
        hash_class = _DIGEST_ALGORITHMS.get(digest_name)
        if hash_class is None:
            raise _structure_error(f"unsupported digest algorithm: {digest_name}")

        signed_attrs = signer_info["signed_attrs"]
        if isinstance(signed_attrs, core.Void):
            signed_bytes = self.content
        else:
            message_digest = None
            for attribute in signed_attrs:
                if attribute["type"].native == "message_digest":
                    message_digest = attribute["values"][0].native
                    break
            if message_digest is None:
                raise _structure_error("signed attributes lack a message digest")

            digest = hashes.Hash(hash_class())
            digest.update(self.content)
            if digest.finalize() != message_digest:
                raise VerificationError(VerificationCheck.SIGNATURE, "message digest mismatch")

            # Signature covers the attributes re-tagged as a SET OF
            signed_bytes = b"\x31" + signed_attrs.dump()[1:]

        try:
            signature_algo = signer_info["signature_algorithm"].signature_algo
        except ValueError as e:
            raise _structure_error(str(e)) from e

        signature = signer_info["signature"].native
        public_key = signer.public_key()
        try:
            if signature_algo == "rsassa_pkcs1v15" and isinstance(public_key, rsa.RSAPublicKey):
                public_key.verify(signature, signed_bytes, padding.PKCS1v15(), hash_class())
            elif signature_algo == "ecdsa" and isinstance(public_key, ec.EllipticCurvePublicKey):
                public_key.verify(signature, signed_bytes, ec.ECDSA(hash_class()))
            else:
                raise _structure_error(
                    f"unsupported signature algorithm {signature_algo} for {type(public_key).__name__}"
                )
        except InvalidSignature as e:
            raise VerificationError(VerificationCheck.SIGNATURE, "signature verification failed") from e

    def _verify_chain(
        self,
        signer: x509.Certificate,
        trust_anchors: Sequence[x509.Certificate],
        at: datetime.datetime,
    ) -> None:
        anchors = list(trust_anchors)
        intermediates = [cert for cert in self.certificates if cert != signer]

        current = signer
        for _ in range(MAX_CHAIN_DEPTH):
            if current in anchors:
                return

            issuer = _find_issuer(current, anchors)
            if issuer is not None:
                check_validity_window(issuer, at)
                return

            issuer = _find_issuer(current, intermediates)
            if issuer is None:
                raise VerificationError(
                    VerificationCheck.CHAIN,
                    f"certificate signed by unknown authority: {current.issuer.rfc4514_string()}",
                )
            check_validity_window(issuer, at)
            intermediates.remove(issuer)
            current = issuer

        raise VerificationError(VerificationCheck.CHAIN, f"chain longer than {MAX_CHAIN_DEPTH} certificates")


def sign(
    content: bytes,
    certificate: x509.Certificate,
    private_key,
    detached: bool = False,
    signed_attributes: bool = True,
    extra_certificates: Sequence[x509.Certificate] = (),
    hash_algorithm: Optional[hashes.HashAlgorithm] = None,
) -> bytes:
    """
    Produce a DER PKCS7 SignedData envelope over content.

    Args:
        content: Payload to sign (signed byte for byte)
        certificate: Signer certificate, embedded in the envelope
        private_key: RSA or EC private key matching certificate
        detached: Leave the payload out of the envelope
        signed_attributes: Include authenticated attributes (content type,
                           signing time, message digest)
        extra_certificates: Intermediates to embed for chain building
        hash_algorithm: Digest algorithm (default SHA-256)

    Returns:
        DER-encoded ContentInfo
    """
    options = [pkcs7.PKCS7Options.Binary]
    if detached:
        options.append(pkcs7.PKCS7Options.DetachedSignature)
    if not signed_attributes:
        options.append(pkcs7.PKCS7Options.NoAttributes)

    builder = (
        pkcs7.PKCS7SignatureBuilder()
        .set_data(content)
        .add_signer(certificate, private_key, hash_algorithm or hashes.SHA256())
    )
    for extra in extra_certificates:
        builder = builder.add_certificate(extra)
    return builder.sign(serialization.Encoding.DER, options)
