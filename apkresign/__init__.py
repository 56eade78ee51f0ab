"""
apkresign - Streaming APK/JAR v1 Signer

Re-signs Android packages and JAR archives with the v1 (JAR) signature
scheme while streaming their entries to the output. The signing identity is
kept in a password protected keystore that is created on first use.

Version: 1.0.0
"""

__version__ = "1.0.0"
__author__ = "apkresign developers"

import logging

from .archive import iter_archive_entries, resign_archive
from .core.config import Config
from .core.exceptions import (
    ApkResignError,
    ClosedSignerError,
    ConfigError,
    IdentityError,
    SigningError,
)
from .identity import IdentityProvider, SigningIdentity
from .signing import StreamingSigner, open_signer

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "Config",
    "ApkResignError",
    "ClosedSignerError",
    "ConfigError",
    "IdentityError",
    "SigningError",
    "IdentityProvider",
    "SigningIdentity",
    "StreamingSigner",
    "open_signer",
    "iter_archive_entries",
    "resign_archive",
]
