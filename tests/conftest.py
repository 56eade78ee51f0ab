"""
apkresign - Test Configuration

Repo root discovery plus shared signing fixtures. RSA key generation is
slow, so one identity is generated per session and reused.
"""

import io
import os
import sys
import zipfile
from pathlib import Path
from typing import Dict

import pytest


def discover_repo_root() -> Path:
    """
    Discover the repository root.

    Priority:
    1. APKRESIGN_REPO_ROOT environment variable
    2. Path traversal from conftest.py location

    Raises:
        RuntimeError: If repo root cannot be discovered
    """
    env_root = os.environ.get("APKRESIGN_REPO_ROOT")
    if env_root:
        root = Path(env_root)
        if root.is_dir() and (root / "pyproject.toml").is_file():
            return root

    current = Path(__file__).resolve().parent
    for _ in range(10):  # Max 10 levels up
        if (current / "pyproject.toml").is_file():
            return current
        parent = current.parent
        if parent == current:
            break
        current = parent

    raise RuntimeError(
        "Could not discover repo root. Set APKRESIGN_REPO_ROOT environment variable "
        "or ensure tests are run from within the repository."
    )


REPO_ROOT = discover_repo_root()

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


from apkresign.core.config import Config, KeystoreConfig  # noqa: E402
from apkresign.identity import (  # noqa: E402
    SigningIdentity,
    create_self_signed_certificate,
    generate_key_pair,
)


SAMPLE_ENTRIES = {
    "a.txt": b"A",
    "b.txt": b"BB",
    "meta/lib.so": bytes(range(256)) * 2,
}


def read_archive(data: bytes) -> Dict[str, bytes]:
    """Map every entry path of an in-memory archive to its content."""
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        return {name: zf.read(name) for name in zf.namelist()}


def build_archive(entries: Dict[str, bytes], stored=()) -> bytes:
    """Write a plain ZIP archive; paths listed in `stored` are not compressed."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for path, data in entries.items():
            compress = zipfile.ZIP_STORED if path in stored else zipfile.ZIP_DEFLATED
            zf.writestr(path, data, compress_type=compress)
    return buf.getvalue()


@pytest.fixture(scope="session")
def repo_root() -> Path:
    """Fixture providing the repository root path."""
    return REPO_ROOT


@pytest.fixture(scope="session")
def identity() -> SigningIdentity:
    """Session-wide freshly generated signing identity."""
    private_key = generate_key_pair()
    certificate = create_self_signed_certificate(private_key)
    return SigningIdentity(private_key, certificate, [certificate], "key0")


@pytest.fixture
def keystore_config(tmp_path) -> KeystoreConfig:
    """Default credentials pointing at a keystore that does not exist yet."""
    return KeystoreConfig(path=str(tmp_path / "keys" / "keystore.p12"))


@pytest.fixture
def config(keystore_config) -> Config:
    """Default configuration using the temporary keystore."""
    return Config(keystore=keystore_config)


@pytest.fixture
def sample_entries() -> Dict[str, bytes]:
    return dict(SAMPLE_ENTRIES)
