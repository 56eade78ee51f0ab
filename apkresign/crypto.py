"""
apkresign - Cryptographic Primitives

Thin layer over `cryptography` and `hashlib`:
- one-time, idempotent backend initialisation
- base64 content digests for manifest attributes
- detached CMS (PKCS#7) signing over arbitrary bytes
"""

import base64
import hashlib
import logging
import threading
from typing import Iterable, Optional

import cryptography
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs7
from cryptography import x509

from .core.algorithms import DIGEST_ALGORITHMS, SIGNATURE_ALGORITHMS, digest_hash_name
from .core.exceptions import IdentityError

logger = logging.getLogger(__name__)

_HASHES = {
    "sha1": hashes.SHA1,
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}

_init_lock = threading.Lock()
_initialized = False


def init_crypto() -> None:
    """
    Check once per process that every configured algorithm is usable.

    Safe to call from every IdentityProvider; after the first successful
    call it returns immediately.

    Raises:
        IdentityError: If the crypto backend lacks a required algorithm.
    """
    global _initialized

    if _initialized:
        return

    with _init_lock:
        if _initialized:
            return

        wanted = set(DIGEST_ALGORITHMS.values()) | set(SIGNATURE_ALGORITHMS.values())
        for hash_name in sorted(wanted):
            try:
                hashes.Hash(hash_algorithm(hash_name))
                hashlib.new(hash_name)
            except (UnsupportedAlgorithm, ValueError) as e:
                raise IdentityError(f"Crypto backend lacks {hash_name}: {e}") from e

        _initialized = True
        logger.debug(f"Crypto initialised (cryptography {cryptography.__version__})")


def hash_algorithm(hash_name: str) -> hashes.HashAlgorithm:
    """Return a `cryptography` hash instance for a hashlib name."""
    try:
        return _HASHES[hash_name.lower()]()
    except KeyError:
        raise UnsupportedAlgorithm(f"Unsupported hash: {hash_name}") from None


def digest_b64(algorithm: str, data: bytes) -> str:
    """Digest `data` with a manifest digest algorithm and base64 encode it."""
    digest = hashlib.new(digest_hash_name(algorithm), data).digest()
    return base64.b64encode(digest).decode("ascii")


def sign_detached(
    data: bytes,
    private_key: rsa.RSAPrivateKey,
    certificate: x509.Certificate,
    chain: Optional[Iterable[x509.Certificate]] = None,
    hash_name: str = "sha256",
) -> bytes:
    """
    Produce a detached CMS SignedData over `data`.

    The signer info carries no signed attributes, so the RSA signature is
    computed over `data` directly, as jarsigner does. Every certificate of
    `chain` is embedded; the content is not.

    Args:
        data: Bytes to sign.
        private_key: RSA signing key.
        certificate: Certificate matching `private_key`.
        chain: Additional certificates to embed.
        hash_name: hashlib name of the signature digest.

    Returns:
        DER encoded ContentInfo.
    """
    builder = (
        pkcs7.PKCS7SignatureBuilder()
        .set_data(data)
        .add_signer(certificate, private_key, hash_algorithm(hash_name))
    )
    for cert in chain or ():
        if cert != certificate:
            builder = builder.add_certificate(cert)

    options = [
        pkcs7.PKCS7Options.DetachedSignature,
        pkcs7.PKCS7Options.NoAttributes,
        pkcs7.PKCS7Options.Binary,
    ]
    return builder.sign(serialization.Encoding.DER, options)
