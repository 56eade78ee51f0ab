"""
PKCS#12 keystore persistence.

A keystore holds one private key and its certificate chain under an alias
(the PKCS#12 friendly name). Two passwords protect it independently:

- the store password keys the integrity MAC over the whole container
- the entry password encrypts the private key (a shrouded PKCS#8 bag)

Certificates are public and stored unencrypted.
"""

import hashlib
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from asn1crypto import cms, keys, pkcs12
from asn1crypto import x509 as asn1_x509
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac, serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ..core.exceptions import IdentityError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

MAC_ITERATIONS = 2048
MAC_SALT_BYTES = 16
_MAC_KEY_ID = 3
_SHA256_BLOCK = 64


def _fill(data: bytes, size: int) -> bytes:
    # repeat `data` up to the next multiple of `size`
    if not data:
        return b""
    length = size * -(-len(data) // size)
    return (data * (length // len(data) + 1))[:length]


def _mac_key(password: str, salt: bytes, iterations: int) -> bytes:
    """Derive the SHA-256 MAC key from the store password (RFC 7292, B.2)."""
    v = _SHA256_BLOCK
    diversifier = bytes([_MAC_KEY_ID]) * v
    block = _fill(salt, v) + _fill(password.encode("utf-16-be") + b"\x00\x00", v)

    a = hashlib.sha256(diversifier + block).digest()
    for _ in range(iterations - 1):
        a = hashlib.sha256(a).digest()
    return a


def _compute_mac(password: str, salt: bytes, iterations: int, data: bytes) -> hmac.HMAC:
    h = hmac.HMAC(_mac_key(password, salt, iterations), hashes.SHA256())
    h.update(data)
    return h


def _bag_attributes(alias: str, local_key_id: bytes) -> pkcs12.Attributes:
    return pkcs12.Attributes([
        {"type": "friendly_name", "values": [alias]},
        {"type": "local_key_id", "values": [local_key_id]},
    ])


def _key_bag(private_key: rsa.RSAPrivateKey, entry_password: str, attributes) -> pkcs12.SafeBag:
    if not entry_password:
        der = private_key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return pkcs12.SafeBag({
            "bag_id": "key_bag",
            "bag_value": keys.PrivateKeyInfo.load(der),
            "bag_attributes": attributes,
        })

    der = private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.BestAvailableEncryption(
            entry_password.encode("utf-8")
        ),
    )
    return pkcs12.SafeBag({
        "bag_id": "pkcs8_shrouded_key_bag",
        "bag_value": keys.EncryptedPrivateKeyInfo.load(der),
        "bag_attributes": attributes,
    })


def _cert_bag(cert: x509.Certificate, attributes=None) -> pkcs12.SafeBag:
    der = cert.public_bytes(serialization.Encoding.DER)
    bag = {
        "bag_id": "cert_bag",
        "bag_value": pkcs12.CertBag({
            "cert_id": "x509",
            "cert_value": asn1_x509.Certificate.load(der),
        }),
    }
    if attributes is not None:
        bag["bag_attributes"] = attributes
    return pkcs12.SafeBag(bag)


def save_keystore(
    path: PathLike,
    alias: str,
    private_key: rsa.RSAPrivateKey,
    chain: List[x509.Certificate],
    store_password: str,
    entry_password: str,
) -> None:
    """
    Write a new keystore holding a single private key entry.

    Args:
        path: Destination file; parent directories are created.
        alias: Entry alias, stored as the friendly name.
        private_key: Key to persist.
        chain: Certificate chain, leaf first.
        store_password: Password keying the container MAC.
        entry_password: Password encrypting the private key.

    Raises:
        IdentityError: If the entry cannot be encoded or the file written.
    """
    keystore_path = Path(path)
    try:
        leaf_der = chain[0].public_bytes(serialization.Encoding.DER)
        attributes = _bag_attributes(alias, hashlib.sha1(leaf_der).digest())

        bags = [_key_bag(private_key, entry_password, attributes)]
        bags.append(_cert_bag(chain[0], attributes))
        bags.extend(_cert_bag(cert) for cert in chain[1:])

        safe = cms.ContentInfo({
            "content_type": "data",
            "content": pkcs12.SafeContents(bags).dump(),
        })
        auth_safe = pkcs12.AuthenticatedSafe([safe]).dump()

        salt = os.urandom(MAC_SALT_BYTES)
        mac = _compute_mac(store_password, salt, MAC_ITERATIONS, auth_safe).finalize()

        pfx = pkcs12.Pfx({
            "version": "v3",
            "auth_safe": {"content_type": "data", "content": auth_safe},
            "mac_data": {
                "mac": {"digest_algorithm": {"algorithm": "sha256"}, "digest": mac},
                "mac_salt": salt,
                "iterations": MAC_ITERATIONS,
            },
        })

        keystore_path.parent.mkdir(parents=True, exist_ok=True)
        keystore_path.write_bytes(pfx.dump())
    except (OSError, ValueError, TypeError, IndexError) as e:
        raise IdentityError(
            f"Failed to write keystore: {e}",
            keystore=str(keystore_path),
            alias=alias,
        ) from e

    logger.info(f"Keystore written: {keystore_path} (alias {alias})")


def _attributes(bag) -> Dict[str, object]:
    found = {}
    for attr in bag["bag_attributes"].native or []:
        if attr["type"] in ("friendly_name", "local_key_id") and attr["values"]:
            found[attr["type"]] = attr["values"][0]
    return found


def _read_store(data: bytes, store_password: str):
    pfx = pkcs12.Pfx.load(data)
    if pfx["auth_safe"]["content_type"].native != "data":
        raise ValueError("only password integrity mode is supported")
    auth_safe = pfx["auth_safe"]["content"].native

    mac_data = pfx["mac_data"]
    if not mac_data.native:
        raise ValueError("keystore carries no integrity MAC")
    if mac_data["mac"]["digest_algorithm"]["algorithm"].native != "sha256":
        raise ValueError("unsupported MAC digest")

    h = _compute_mac(
        store_password,
        mac_data["mac_salt"].native,
        mac_data["iterations"].native,
        auth_safe,
    )
    try:
        h.verify(mac_data["mac"]["digest"].native)
    except InvalidSignature:
        raise ValueError("wrong store password or corrupt keystore") from None

    bags = []
    for content_info in pkcs12.AuthenticatedSafe.load(auth_safe):
        if content_info["content_type"].native != "data":
            raise ValueError("encrypted safe contents are not supported")
        bags.extend(pkcs12.SafeContents.load(content_info["content"].native))
    return bags


def load_keystore(
    path: PathLike,
    alias: str,
    store_password: str,
    entry_password: str,
) -> Tuple[rsa.RSAPrivateKey, List[x509.Certificate]]:
    """
    Unlock one private key entry of a keystore.

    Args:
        path: Keystore file.
        alias: Entry alias, matched case-insensitively.
        store_password: Password keying the container MAC.
        entry_password: Password decrypting the entry.

    Returns:
        Tuple of (private_key, certificate_chain), chain leaf first.

    Raises:
        IdentityError: If the store cannot be read or unlocked, the alias is
            absent or holds no RSA key with a certificate.
    """
    keystore_path = str(path)

    key_bag = None
    key_id: Optional[bytes] = None
    certs: List[Tuple[Optional[bytes], bytes]] = []
    try:
        with open(keystore_path, "rb") as f:
            data = f.read()
        for bag in _read_store(data, store_password):
            bag_id = bag["bag_id"].native
            attrs = _attributes(bag)
            if bag_id in ("key_bag", "pkcs8_shrouded_key_bag"):
                name = attrs.get("friendly_name") or ""
                if key_bag is None and name.lower() == alias.lower():
                    key_bag = bag
                    key_id = attrs.get("local_key_id")
            elif bag_id == "cert_bag":
                certs.append((attrs.get("local_key_id"), bytes(bag["bag_value"]["cert_value"])))
    except (OSError, ValueError, TypeError, KeyError) as e:
        raise IdentityError(
            f"Cannot open keystore: {e}",
            keystore=keystore_path,
            alias=alias,
        ) from e

    if key_bag is None:
        raise IdentityError(
            f"Keystore has no private key entry named {alias!r}",
            keystore=keystore_path,
            alias=alias,
        )

    password = None
    if key_bag["bag_id"].native == "pkcs8_shrouded_key_bag":
        password = entry_password.encode("utf-8") if entry_password else b""

    try:
        private_key = serialization.load_der_private_key(
            key_bag["bag_value"].untag().dump(), password=password
        )
        chain = [x509.load_der_x509_certificate(der) for kid, der in certs if kid == key_id]
        chain.extend(x509.load_der_x509_certificate(der) for kid, der in certs if kid is None)
    except (ValueError, TypeError) as e:
        raise IdentityError(
            f"Cannot unlock keystore entry {alias!r}: {e}",
            keystore=keystore_path,
            alias=alias,
        ) from e

    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise IdentityError(
            f"Keystore entry {alias!r} does not hold an RSA key",
            keystore=keystore_path,
            alias=alias,
        )
    if not chain:
        raise IdentityError(
            f"Keystore entry {alias!r} has no certificate",
            keystore=keystore_path,
            alias=alias,
        )

    return private_key, chain
