"""
Signature block (META-INF/<NAME>.RSA) creation and verification.

The block is a CMS SignedData without embedded content whose single signer
signs the exact signature file bytes. Package verifiers reject BER
indefinite-length constructs, so every block is re-encoded with definite
lengths before it is written.
"""

import logging
from typing import Dict

from asn1crypto import cms
from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from ..core.algorithms import signature_hash_name
from ..core.exceptions import SigningError
from ..crypto import hash_algorithm
from ..identity import SigningIdentity

logger = logging.getLogger(__name__)

_CMS_DIGESTS: Dict[str, str] = {
    "sha1": "sha1",
    "sha256": "sha256",
    "sha384": "sha384",
    "sha512": "sha512",
}


def to_definite_length(block: bytes) -> bytes:
    """
    Re-encode a CMS ContentInfo with definite lengths only.

    Raises:
        ValueError: If `block` is not a CMS ContentInfo.
    """
    info = cms.ContentInfo.load(block)
    return info.dump(force=True)


def create_signature_block(
    identity: SigningIdentity,
    signature_file: bytes,
    signature_algorithm: str = "SHA256withRSA",
) -> bytes:
    """
    Sign the serialized signature file and return the block entry bytes.

    Args:
        identity: Signer key and certificate chain.
        signature_file: Exact bytes of the .SF entry.
        signature_algorithm: e.g. `SHA256withRSA`.

    Raises:
        SigningError: If the signature cannot be produced or re-encoded.
    """
    try:
        hash_name = signature_hash_name(signature_algorithm)
        block = identity.sign(signature_file, hash_name)
        return to_definite_length(block)
    except (UnsupportedAlgorithm, ValueError, TypeError) as e:
        logger.error(f"Signature block creation failed: {e}")
        raise SigningError(
            f"Failed to sign signature file: {e}",
            stage="signature-block",
        ) from e


def verify_signature_block(block: bytes, signature_file: bytes) -> x509.Certificate:
    """
    Verify a signature block against the signature file it covers.

    The signer is located among the embedded certificates by issuer and
    serial number. Signed attributes, when present, must carry the digest
    of `signature_file` and are what the signature covers.

    Returns:
        The signer certificate.

    Raises:
        SigningError: If the block is malformed or the signature does not verify.
    """
    try:
        info = cms.ContentInfo.load(block)
        if info["content_type"].native != "signed_data":
            raise ValueError(f"unexpected content type {info['content_type'].native}")
        signed_data = info["content"]
        signer_infos = signed_data["signer_infos"]
        if len(signer_infos) != 1:
            raise ValueError(f"expected one signer, found {len(signer_infos)}")
        signer_info = signer_infos[0]

        sid = signer_info["sid"]
        if sid.name != "issuer_and_serial_number":
            raise ValueError("signer is not identified by issuer and serial number")
        serial = sid.chosen["serial_number"].native
        issuer = sid.chosen["issuer"].dump()

        signer_cert = None
        for choice in signed_data["certificates"]:
            if choice.name != "certificate":
                continue
            cert = choice.chosen
            if cert.serial_number == serial and cert.issuer.dump() == issuer:
                signer_cert = x509.load_der_x509_certificate(cert.dump())
                break
        if signer_cert is None:
            raise ValueError("signer certificate not embedded")

        digest_name = _CMS_DIGESTS[signer_info["digest_algorithm"]["algorithm"].native]
        signature = signer_info["signature"].native

        signed_attrs = signer_info["signed_attrs"]
        if signed_attrs.native:
            signed = _check_signed_attributes(signed_attrs, signature_file, digest_name)
        else:
            signed = signature_file
    except (ValueError, KeyError, TypeError) as e:
        raise SigningError(f"Malformed signature block: {e}", stage="verify") from e

    public_key = signer_cert.public_key()
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise SigningError("Signer key is not RSA", stage="verify")

    try:
        public_key.verify(signature, signed, padding.PKCS1v15(), hash_algorithm(digest_name))
    except InvalidSignature as e:
        raise SigningError("Signature block does not match signature file", stage="verify") from e

    return signer_cert


def _check_signed_attributes(signed_attrs, signature_file: bytes, digest_name: str) -> bytes:
    h = hashes.Hash(hash_algorithm(digest_name))
    h.update(signature_file)
    expected = h.finalize()

    for attr in signed_attrs:
        if attr["type"].native == "message_digest":
            if attr["values"][0].native != expected:
                raise ValueError("message digest attribute does not match")
            break
    else:
        raise ValueError("signed attributes lack a message digest")

    # the signature covers the attributes re-tagged as a SET OF
    return b"\x31" + signed_attrs.dump()[1:]
