"""
Tests for apkresign Core Module
"""

import pytest

from apkresign.core.algorithms import (
    canonical_digest_name,
    digest_hash_name,
    signature_hash_name,
)
from apkresign.core.config import Config, KeystoreConfig, SigningConfig
from apkresign.core.exceptions import (
    ApkResignError,
    ClosedSignerError,
    ConfigError,
    IdentityError,
    SigningError,
)


class TestConfig:
    """Tests for configuration management."""

    def test_default_config(self):
        """Test default configuration values."""
        config = Config()

        assert config.keystore.path == "keystore.p12"
        assert config.keystore.store_password == "000000"
        assert config.keystore.alias == "key0"
        assert config.keystore.entry_password == "000000"
        assert config.signing.digest_algorithm == "SHA1"
        assert config.signing.signature_algorithm == "SHA256withRSA"
        assert config.validate() == []

    def test_metadata_paths(self):
        """Test reserved metadata paths derive from the signature name."""
        signing = SigningConfig()

        assert signing.manifest_path == "META-INF/MANIFEST.MF"
        assert signing.signature_file_path == "META-INF/INTERMED.SF"
        assert signing.signature_block_path == "META-INF/INTERMED.RSA"

        signing = SigningConfig(signature_name="CERT")
        assert signing.signature_block_path == "META-INF/CERT.RSA"

    def test_config_from_dict(self):
        """Test configuration from dictionary."""
        data = {
            "keystore": {"path": "/tmp/release.p12", "alias": "release"},
            "signing": {"digest_algorithm": "SHA-256"},
            "log_level": "DEBUG",
        }

        config = Config.from_dict(data)

        assert config.keystore.path == "/tmp/release.p12"
        assert config.keystore.alias == "release"
        assert config.keystore.store_password == "000000"
        assert config.signing.digest_algorithm == "SHA-256"
        assert config.signing.signature_algorithm == "SHA256withRSA"
        assert config.log_level == "DEBUG"

    def test_config_from_file(self, tmp_path):
        """Test loading configuration from YAML."""
        path = tmp_path / "apkresign.yaml"
        path.write_text(
            "keystore:\n"
            "  path: signing/keystore.p12\n"
            "  store_password: secret\n"
            "signing:\n"
            "  created_by: 2.0 (tests)\n"
            "log_json: true\n"
        )

        config = Config.from_file(str(path))

        assert config.keystore.path == "signing/keystore.p12"
        assert config.keystore.store_password == "secret"
        assert config.signing.created_by == "2.0 (tests)"
        assert config.log_json is True

    def test_config_from_empty_file(self, tmp_path):
        """Test an empty YAML file yields the defaults."""
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert Config.from_file(str(path)) == Config()

    def test_config_from_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Config.from_file(str(tmp_path / "missing.yaml"))

    def test_to_dict_round_trip(self):
        """Test to_dict output feeds back into from_dict."""
        config = Config(
            keystore=KeystoreConfig(path="x.p12", alias="other"),
            signing=SigningConfig(digest_algorithm="SHA-512"),
        )

        assert Config.from_dict(config.to_dict()) == config

    def test_with_keystore_path(self):
        """Test copying a configuration with another keystore path."""
        config = Config()
        moved = config.with_keystore_path("/var/lib/keys.p12")

        assert moved.keystore.path == "/var/lib/keys.p12"
        assert moved.keystore.alias == config.keystore.alias
        assert config.keystore.path == "keystore.p12"

    def test_config_validation(self):
        """Test configuration validation."""
        config = Config()
        config.signing.digest_algorithm = "MD5"
        config.keystore.alias = ""

        errors = config.validate()

        assert len(errors) == 2
        assert any("digest" in e.lower() for e in errors)
        assert any("alias" in e.lower() for e in errors)

    def test_validation_rejects_sha1_signatures(self):
        config = Config(signing=SigningConfig(signature_algorithm="SHA1withRSA"))

        with pytest.raises(ConfigError):
            config.validate_or_raise()

    def test_validation_rejects_bad_signature_name(self):
        config = Config(signing=SigningConfig(signature_name="a/b"))

        assert any("base name" in e for e in config.validate())

    def test_validation_rejects_unknown_log_level(self):
        config = Config(log_level="LOUD")

        assert config.validate() == ["Unknown log level: LOUD"]
        assert Config(log_level="debug").validate() == []


class TestAlgorithms:
    """Tests for algorithm name tables."""

    def test_digest_names(self):
        assert digest_hash_name("SHA1") == "sha1"
        assert digest_hash_name("sha-256") == "sha256"
        assert canonical_digest_name("sha-512") == "SHA-512"

    def test_signature_names(self):
        assert signature_hash_name("SHA256withRSA") == "sha256"
        assert signature_hash_name("sha384withrsa") == "sha384"

    def test_unknown_algorithms(self):
        with pytest.raises(ConfigError):
            digest_hash_name("MD5")
        with pytest.raises(ConfigError):
            signature_hash_name("SHA256withECDSA")


class TestExceptions:
    """Tests for exception hierarchy."""

    def test_base_exception(self):
        """Test base exception."""
        error = ApkResignError("Test error", code="TEST_CODE")

        assert str(error) == "[TEST_CODE] Test error"
        assert error.to_dict()["error"] == "TEST_CODE"

    def test_identity_error(self):
        error = IdentityError("bad password", keystore="k.p12", alias="key0")

        assert isinstance(error, ApkResignError)
        assert error.code == "IDENTITY_ERROR"
        assert error.details == {"keystore": "k.p12", "alias": "key0"}

    def test_closed_signer_error(self):
        error = ClosedSignerError("closed", state="closed", path="x.txt")

        assert error.to_dict() == {
            "error": "SIGNER_CLOSED",
            "message": "closed",
            "details": {"state": "closed", "path": "x.txt"},
        }

    def test_signing_error(self):
        error = SigningError("failed", stage="signature-block")

        assert error.stage == "signature-block"
        assert error.code == "SIGNING_ERROR"
