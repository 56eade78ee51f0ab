"""
apkresign Core Module

Configuration, algorithm tables and the exception hierarchy shared by the
identity and signing packages.
"""

from .config import Config, KeystoreConfig, SigningConfig, MANIFEST_PATH, METADATA_DIR
from .exceptions import (
    ApkResignError,
    ConfigError,
    IdentityError,
    ClosedSignerError,
    SigningError,
)

__all__ = [
    "Config",
    "KeystoreConfig",
    "SigningConfig",
    "MANIFEST_PATH",
    "METADATA_DIR",
    "ApkResignError",
    "ConfigError",
    "IdentityError",
    "ClosedSignerError",
    "SigningError",
]
