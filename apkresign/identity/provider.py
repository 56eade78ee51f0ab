"""
Signing identity bootstrap: load the persisted identity or create one.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Union

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from ..core.config import KeystoreConfig
from ..core.exceptions import IdentityError
from ..crypto import init_crypto, sign_detached
from ..observability import context_logger
from .keystore import load_keystore, save_keystore

KEY_SIZE = 2048
PUBLIC_EXPONENT = 65537
COMMON_NAME = "SelfCert"
VALIDITY_BEFORE = timedelta(days=1)
VALIDITY_AFTER = timedelta(days=365)


@dataclass
class SigningIdentity:
    """
    Key pair, certificate and chain of the single signer of a session.

    The private key is only used through `sign`; it is excluded from repr.
    """
    private_key: rsa.RSAPrivateKey = field(repr=False)
    certificate: x509.Certificate
    chain: List[x509.Certificate]
    alias: str = "key0"

    @property
    def public_key(self) -> rsa.RSAPublicKey:
        return self.private_key.public_key()

    def sign(self, data: bytes, hash_name: str = "sha256") -> bytes:
        """
        Detached CMS signature over `data` carrying the certificate chain.

        Args:
            data: Exact bytes to sign.
            hash_name: hashlib name of the signature digest.

        Returns:
            DER encoded ContentInfo (SignedData without content).
        """
        return sign_detached(
            data,
            self.private_key,
            self.certificate,
            chain=self.chain,
            hash_name=hash_name,
        )


def generate_key_pair(key_size: int = KEY_SIZE) -> rsa.RSAPrivateKey:
    """Generate an RSA private key (public exponent 65537)."""
    return rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=key_size)


def create_self_signed_certificate(
    private_key: rsa.RSAPrivateKey,
    common_name: str = COMMON_NAME,
    now: Optional[datetime] = None,
) -> x509.Certificate:
    """
    Build a self-signed certificate for `private_key`.

    Subject and issuer are both `CN=<common_name>`; the certificate is valid
    from one day before `now` until one year after it and is signed with
    SHA-256.
    """
    now = now or datetime.now(timezone.utc)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])

    builder = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - VALIDITY_BEFORE)
        .not_valid_after(now + VALIDITY_AFTER)
    )
    return builder.sign(private_key, hashes.SHA256())


def load_or_create(
    store_path: Union[str, Path],
    store_password: str,
    entry_alias: str,
    entry_password: str,
) -> SigningIdentity:
    """
    Return the identity stored under `entry_alias`, creating it if needed.

    When `store_path` does not exist a 2048-bit RSA key and a self-signed
    certificate are generated and written to a new keystore before the
    identity is returned. That write is the only one this function makes.

    Raises:
        IdentityError: If the keystore cannot be read, unlocked or written,
            the alias is missing, or key generation fails.
    """
    init_crypto()
    path = Path(store_path)
    log = context_logger(__name__, keystore=str(path), alias=entry_alias)

    if not path.exists():
        log.info(f"Keystore {path} not found, creating a new signing identity")
        try:
            private_key = generate_key_pair()
            certificate = create_self_signed_certificate(private_key)
        except (UnsupportedAlgorithm, ValueError) as e:
            raise IdentityError(
                f"Failed to generate signing identity: {e}",
                keystore=str(path),
                alias=entry_alias,
            ) from e

        save_keystore(
            path, entry_alias, private_key, [certificate], store_password, entry_password
        )
        return SigningIdentity(private_key, certificate, [certificate], entry_alias)

    private_key, chain = load_keystore(path, entry_alias, store_password, entry_password)
    log.info(f"Loaded signing identity {entry_alias!r} from {path}")
    return SigningIdentity(private_key, chain[0], chain, entry_alias)


class IdentityProvider:
    """
    Supplies the signing identity described by a KeystoreConfig.

    The identity is resolved on first use and cached, so repeated calls for
    one output reuse it without touching the keystore again.
    """

    def __init__(self, config: Optional[KeystoreConfig] = None):
        """
        Initialize identity provider.

        Args:
            config: Keystore location and credentials (defaults if omitted).
        """
        init_crypto()
        self._config = config or KeystoreConfig()
        self._identity: Optional[SigningIdentity] = None

    @property
    def config(self) -> KeystoreConfig:
        return self._config

    def load_or_create(self) -> SigningIdentity:
        """Load or create the configured identity (cached after the first call)."""
        if self._identity is None:
            self._identity = load_or_create(
                self._config.path,
                self._config.store_password,
                self._config.alias,
                self._config.entry_password,
            )
        return self._identity
