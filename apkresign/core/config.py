"""
apkresign Configuration Management

Keystore location and credentials, signing algorithms and the names of the
metadata entries. The keystore passwords are configuration, not secrets:
the defaults are fixed and shared by every installation.
"""

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .algorithms import DIGEST_ALGORITHMS, SIGNATURE_ALGORITHMS
from .exceptions import ConfigError

METADATA_DIR = "META-INF"
MANIFEST_PATH = f"{METADATA_DIR}/MANIFEST.MF"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class KeystoreConfig:
    """Persisted signing identity location and credentials."""
    path: str = "keystore.p12"
    store_password: str = "000000"
    alias: str = "key0"
    entry_password: str = "000000"


@dataclass
class SigningConfig:
    """Manifest digest and signature block settings."""
    digest_algorithm: str = "SHA1"
    signature_algorithm: str = "SHA256withRSA"
    created_by: str = "1.0 (apkresign)"
    signature_name: str = "INTERMED"

    @property
    def manifest_path(self) -> str:
        return MANIFEST_PATH

    @property
    def signature_file_path(self) -> str:
        return f"{METADATA_DIR}/{self.signature_name}.SF"

    @property
    def signature_block_path(self) -> str:
        return f"{METADATA_DIR}/{self.signature_name}.RSA"


@dataclass
class Config:
    """
    Main configuration class for apkresign.

    Aggregates the keystore and signing configurations.
    """
    keystore: KeystoreConfig = field(default_factory=KeystoreConfig)
    signing: SigningConfig = field(default_factory=SigningConfig)

    # Operational settings
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_file(cls, config_path: str) -> "Config":
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to configuration YAML file

        Returns:
            Populated Config object
        """
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(path) as f:
            data = yaml.safe_load(f)

        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """
        Create configuration from dictionary.

        Args:
            data: Configuration dictionary

        Returns:
            Populated Config object
        """
        config = cls()

        if "keystore" in data:
            config.keystore = KeystoreConfig(**data["keystore"])
        if "signing" in data:
            config.signing = SigningConfig(**data["signing"])

        if "log_level" in data:
            config.log_level = data["log_level"]
        if "log_json" in data:
            config.log_json = data["log_json"]

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "keystore": {
                "path": self.keystore.path,
                "store_password": self.keystore.store_password,
                "alias": self.keystore.alias,
                "entry_password": self.keystore.entry_password,
            },
            "signing": {
                "digest_algorithm": self.signing.digest_algorithm,
                "signature_algorithm": self.signing.signature_algorithm,
                "created_by": self.signing.created_by,
                "signature_name": self.signing.signature_name,
            },
            "log_level": self.log_level,
            "log_json": self.log_json,
        }

    def with_keystore_path(self, path: str) -> "Config":
        """Return a copy of this configuration pointing at another keystore file."""
        return replace(self, keystore=replace(self.keystore, path=str(path)))

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.keystore.path:
            errors.append("Keystore path must not be empty")
        if not self.keystore.alias:
            errors.append("Keystore alias must not be empty")

        digests = {name.upper() for name in DIGEST_ALGORITHMS}
        if self.signing.digest_algorithm.upper() not in digests:
            errors.append(
                f"Unsupported digest algorithm: {self.signing.digest_algorithm}"
            )

        signatures = {name.upper() for name in SIGNATURE_ALGORITHMS}
        if self.signing.signature_algorithm.upper() not in signatures:
            errors.append(
                f"Unsupported signature algorithm: {self.signing.signature_algorithm}"
            )

        name = self.signing.signature_name
        if not name or "/" in name or not name.isascii():
            errors.append(f"Invalid signature file base name: {name!r}")

        if not self.signing.created_by:
            errors.append("Created-By value must not be empty")

        if self.log_level.upper() not in LOG_LEVELS:
            errors.append(f"Unknown log level: {self.log_level}")

        return errors

    def validate_or_raise(self) -> None:
        """Raise ConfigError on the first validation error."""
        errors = self.validate()
        if errors:
            raise ConfigError(errors[0])
