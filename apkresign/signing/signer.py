"""
Streaming package signer.

Entries are written to the output archive as they arrive; only their paths
and digests are kept. Signing needs the complete entry set, so the metadata
(manifest, signature file, signature block) is produced in a separate
finalization step:

    OPEN -> ENTRY_WRITTEN (repeated) -> FINALIZING -> CLOSED

No entry may be added once finalization has begun.
"""

import zlib
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Set, Tuple, Union

from cryptography.exceptions import UnsupportedAlgorithm

from ..archive import ArchiveWriter
from ..core.algorithms import canonical_digest_name, signature_hash_name
from ..core.config import Config, METADATA_DIR, MANIFEST_PATH, SigningConfig
from ..core.exceptions import ApkResignError, ClosedSignerError, SigningError
from ..crypto import digest_b64
from ..identity import IdentityProvider, SigningIdentity
from ..manifest import NAME, ManifestEntry, build_manifest, build_signature_file, check_attribute
from ..observability import context_logger
from .block import create_signature_block

OutputTarget = Union[str, Path, BinaryIO]


class SignerState(str, Enum):
    """Lifecycle of a StreamingSigner."""
    OPEN = "open"
    ENTRY_WRITTEN = "entry_written"
    FINALIZING = "finalizing"
    CLOSED = "closed"


def is_reserved_path(path: str) -> bool:
    """
    True for signature metadata the signer writes itself.

    Covers the manifest and every `.SF`/`.RSA` file under META-INF, so the
    signatures of a previously signed input are dropped on re-signing.
    """
    if path == MANIFEST_PATH:
        return True
    return path.startswith(METADATA_DIR) and (path.endswith(".SF") or path.endswith(".RSA"))


class StreamingSigner:
    """
    Writes a v1 (JAR) signed ZIP archive one entry at a time.

    Usage:
        with StreamingSigner("out.apk", identity) as signer:
            signer.add_entry("classes.dex", data)

    Leaving the `with` block finalizes the archive and releases the output.
    """

    def __init__(
        self,
        output: OutputTarget,
        identity: SigningIdentity,
        config: Optional[SigningConfig] = None,
        close_output: bool = True,
    ):
        """
        Initialize the signer.

        Args:
            output: Destination file path, or a writable binary stream.
            identity: Key and certificate chain that sign the archive.
            config: Digest/signature algorithms and metadata names.
            close_output: Close a caller supplied stream on `close()`.
                Files opened from a path are always closed.

        Raises:
            ConfigError: If the configured algorithms are not supported.
        """
        self.config = config or SigningConfig()
        self.identity = identity

        canonical_digest_name(self.config.digest_algorithm)
        signature_hash_name(self.config.signature_algorithm)

        if isinstance(output, (str, Path)):
            self._output: BinaryIO = open(output, "wb")
            self._owns_output = True
        else:
            self._output = output
            self._owns_output = close_output

        self._writer = ArchiveWriter(self._output)
        self._state = SignerState.OPEN
        self._released = False
        self._entries: List[ManifestEntry] = []
        self._paths: Set[str] = set()
        self._main_attributes: Dict[str, str] = {}
        self._log = context_logger(
            __name__, alias=identity.alias, signature_name=self.config.signature_name
        )

        self.manifest_bytes: Optional[bytes] = None
        self.signature_file_bytes: Optional[bytes] = None

    @property
    def state(self) -> SignerState:
        return self._state

    @property
    def entries(self) -> Tuple[ManifestEntry, ...]:
        """Recorded (path, digest) pairs in submission order."""
        return tuple(self._entries)

    def _check_open(self, path: Optional[str] = None) -> None:
        if self._state in (SignerState.FINALIZING, SignerState.CLOSED):
            raise ClosedSignerError(
                f"Signer is {self._state.value}, no more entries accepted",
                state=self._state.value,
                path=path,
            )

    def add_manifest_attribute(self, name: str, value: str) -> None:
        """
        Add an attribute to the manifest main section.

        Raises:
            ClosedSignerError: If finalization has begun.
            ValueError: If the name is longer than 70 bytes or malformed.
        """
        self._check_open()
        check_attribute(name, value)
        self._main_attributes[name] = value

    def add_entry(
        self,
        path: str,
        content: bytes,
        allow_compression: bool = True,
        flush_hint: bool = False,
    ) -> bool:
        """
        Write one entry and record its digest.

        Args:
            path: Archive path.
            content: Uncompressed entry bytes.
            allow_compression: Deflate the entry; stored otherwise.
            flush_hint: Flush the output stream after the entry.

        Returns:
            True if written, False if skipped as signature metadata.

        Raises:
            ClosedSignerError: If finalization has begun.
            ValueError: If `path` was already written or cannot be
                written as a manifest `Name` (CR, LF or NUL).
        """
        self._check_open(path)

        if is_reserved_path(path):
            self._log.debug(
                f"Skipping signature metadata entry {path}",
                extra={"entry_path": path},
            )
            return False

        check_attribute(NAME, path)

        if path in self._paths:
            raise ValueError(f"Duplicate archive entry: {path}")

        if allow_compression:
            self._writer.write_entry(path, content)
        else:
            self._writer.write_entry(path, content, store=True, crc=zlib.crc32(content))

        self._paths.add(path)
        self._entries.append(
            ManifestEntry(path, digest_b64(self.config.digest_algorithm, content))
        )
        self._state = SignerState.ENTRY_WRITTEN

        if flush_hint:
            self._writer.flush()

        self._log.debug(
            f"Wrote entry {path} ({len(content)} bytes, "
            f"{'deflated' if allow_compression else 'stored'})",
            extra={"entry_path": path},
        )
        return True

    def finalize(self) -> None:
        """
        Write manifest, signature file, signature block and the central directory.

        Calling it again after success does nothing. Metadata written before
        a failure stays in the output; the archive must then be discarded.

        Raises:
            SigningError: If digesting or signing fails, or an earlier
                finalization failed.
        """
        if self._state is SignerState.CLOSED:
            return
        if self._state is SignerState.FINALIZING:
            raise SigningError("An earlier finalization failed", stage="finalize")

        self._state = SignerState.FINALIZING
        cfg = self.config

        try:
            manifest = build_manifest(
                self._entries,
                cfg.digest_algorithm,
                cfg.created_by,
                self._main_attributes,
            )
            self.manifest_bytes = manifest.to_bytes()
        except (ValueError, ApkResignError) as e:
            self._log.error(f"Manifest serialization failed: {e}", extra={"stage": "manifest"})
            raise SigningError(f"Failed to build manifest: {e}", stage="manifest") from e
        self._writer.write_entry(cfg.manifest_path, self.manifest_bytes)

        try:
            signature_file = build_signature_file(manifest, cfg.digest_algorithm, cfg.created_by)
            self.signature_file_bytes = signature_file.to_bytes()
        except (ValueError, UnsupportedAlgorithm, ApkResignError) as e:
            self._log.error(
                f"Signature file serialization failed: {e}", extra={"stage": "signature-file"}
            )
            raise SigningError(
                f"Failed to build signature file: {e}", stage="signature-file"
            ) from e
        self._writer.write_entry(cfg.signature_file_path, self.signature_file_bytes)

        block = create_signature_block(
            self.identity, self.signature_file_bytes, cfg.signature_algorithm
        )
        self._writer.write_entry(cfg.signature_block_path, block)

        self._writer.close()
        self._output.flush()
        self._state = SignerState.CLOSED

        self._log.info(
            f"Signed {len(self._entries)} entries as {cfg.signature_name} "
            f"({cfg.digest_algorithm}, {cfg.signature_algorithm})",
        )

    def close(self) -> None:
        """Finalize if still open, then release the output."""
        try:
            if self._state in (SignerState.OPEN, SignerState.ENTRY_WRITTEN):
                self.finalize()
        finally:
            self._release()

    def _release(self) -> None:
        if self._released:
            return
        self._released = True
        if self._owns_output:
            self._output.close()

    def __enter__(self) -> "StreamingSigner":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def open_signer(
    config: Optional[Config],
    output: OutputTarget,
    close_output: bool = True,
) -> StreamingSigner:
    """
    Resolve the configured identity and return a signer bound to `output`.

    The identity is loaded (or created) before the output is touched, so an
    IdentityError leaves no partial archive behind.

    Raises:
        ConfigError: If the configuration is invalid.
        IdentityError: If the keystore cannot provide the identity.
    """
    config = config or Config()
    config.validate_or_raise()

    identity = IdentityProvider(config.keystore).load_or_create()
    return StreamingSigner(output, identity, config.signing, close_output=close_output)
