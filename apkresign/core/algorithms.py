"""
Digest and signature algorithm names.

Names are the ones that appear in manifest attributes (`SHA1-Digest`,
`SHA-256-Digest-Manifest`, ...) and in the Java style signature algorithm
notation (`SHA256withRSA`). Values are hashlib names.
"""

from typing import Dict

from .exceptions import ConfigError

DIGEST_ALGORITHMS: Dict[str, str] = {
    "SHA1": "sha1",
    "SHA-256": "sha256",
    "SHA-384": "sha384",
    "SHA-512": "sha512",
}

# RSA PKCS#1 v1.5 only; the CMS builder refuses SHA-1 signers.
SIGNATURE_ALGORITHMS: Dict[str, str] = {
    "SHA256withRSA": "sha256",
    "SHA384withRSA": "sha384",
    "SHA512withRSA": "sha512",
}


def digest_hash_name(algorithm: str) -> str:
    """Return the hashlib name for a manifest digest algorithm."""
    for name, hash_name in DIGEST_ALGORITHMS.items():
        if name.upper() == algorithm.upper():
            return hash_name
    raise ConfigError(
        f"Unsupported digest algorithm: {algorithm}. "
        f"Supported: {', '.join(DIGEST_ALGORITHMS)}",
        field="digest_algorithm",
    )


def canonical_digest_name(algorithm: str) -> str:
    """Return the attribute spelling of a digest algorithm (`sha-256` -> `SHA-256`)."""
    for name in DIGEST_ALGORITHMS:
        if name.upper() == algorithm.upper():
            return name
    raise ConfigError(
        f"Unsupported digest algorithm: {algorithm}",
        field="digest_algorithm",
    )


def signature_hash_name(algorithm: str) -> str:
    """Return the hashlib name of the digest used by a signature algorithm."""
    for name, hash_name in SIGNATURE_ALGORITHMS.items():
        if name.upper() == algorithm.upper():
            return hash_name
    raise ConfigError(
        f"Unsupported signature algorithm: {algorithm}. "
        f"Supported: {', '.join(SIGNATURE_ALGORITHMS)}",
        field="signature_algorithm",
    )
