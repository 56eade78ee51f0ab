"""
apkresign - Signing Identity Provider

Owns the RSA key pair, its self-signed certificate and the certificate
chain used to sign packages. The identity is read from a password protected
PKCS#12 keystore (store password for the container, entry password for
the key); when the keystore file is absent a fresh identity is
generated and persisted before it is handed out.

Keystore creation takes no lock: two processes creating the same file race,
callers must serialize creation themselves.
"""

from .keystore import load_keystore, save_keystore
from .provider import (
    IdentityProvider,
    SigningIdentity,
    create_self_signed_certificate,
    generate_key_pair,
    load_or_create,
)

__all__ = [
    "IdentityProvider",
    "SigningIdentity",
    "create_self_signed_certificate",
    "generate_key_pair",
    "load_keystore",
    "load_or_create",
    "save_keystore",
]
