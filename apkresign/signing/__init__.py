"""
apkresign - Package Signing

Streaming v1 (JAR) signer and the CMS signature block it emits.
"""

from .block import create_signature_block, to_definite_length, verify_signature_block
from .signer import SignerState, StreamingSigner, is_reserved_path, open_signer

__all__ = [
    "SignerState",
    "StreamingSigner",
    "create_signature_block",
    "is_reserved_path",
    "open_signer",
    "to_definite_length",
    "verify_signature_block",
]
