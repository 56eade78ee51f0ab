"""
apkresign - Manifest and Signature File Format

Byte-exact serializer and parser for the JAR manifest text format used by
both META-INF/MANIFEST.MF and the .SF signature file:

- CRLF line endings, UTF-8 text
- `Name: Value` attribute lines, folded so that no physical line exceeds
  70 bytes; continuation lines start with a single space
- a main section, then one section per entry introduced by `Name: <path>`,
  every section terminated by a blank line

Sections serialize on their own (`Manifest.section_bytes`), which is what
the signature file digests; no offset arithmetic against a full manifest
is involved.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .core.algorithms import canonical_digest_name
from .crypto import digest_b64

MAX_LINE_BYTES = 70
CRLF = b"\r\n"

MANIFEST_VERSION = "Manifest-Version"
SIGNATURE_VERSION = "Signature-Version"
CREATED_BY = "Created-By"
NAME = "Name"
FORMAT_VERSION = "1.0"

_ATTRIBUTE_NAME = re.compile(r"[A-Za-z0-9][A-Za-z0-9_-]*")


@dataclass(frozen=True)
class ManifestEntry:
    """Archive path and base64 digest of its uncompressed content."""
    path: str
    digest: str


@dataclass(frozen=True)
class SignatureFileSection:
    """Archive path and base64 digest of its serialized manifest section."""
    path: str
    digest: str


def digest_attribute(algorithm: str, suffix: str = "") -> str:
    """Attribute name for a digest, e.g. `SHA1-Digest` or `SHA-256-Digest-Manifest`."""
    return f"{canonical_digest_name(algorithm)}-Digest{suffix}"


def check_attribute(name: str, value: str) -> None:
    """
    Validate an attribute before serialization.

    Raises:
        ValueError: If the name is not a legal header name, is longer than
            70 UTF-8 bytes, or the value contains a line break or NUL.
    """
    if len(name.encode("utf-8")) > MAX_LINE_BYTES:
        raise ValueError(f"Attribute name too long: {name[:20]}...")
    if not _ATTRIBUTE_NAME.fullmatch(name):
        raise ValueError(f"Invalid attribute name: {name!r}")
    if any(c in value for c in "\r\n\0"):
        raise ValueError(f"Attribute {name} value contains a line break or NUL")


def _cut(line: bytes, limit: int) -> int:
    # step back so that a continuation byte never starts the next line
    cut = limit
    while cut > 1 and (line[cut] & 0xC0) == 0x80:
        cut -= 1
    return cut


def fold_attribute(name: str, value: str) -> bytes:
    """
    Serialize one attribute, folding it into 70-byte physical lines.

    The first line holds up to 70 bytes, each continuation line a single
    space followed by up to 69 bytes. Multi-byte UTF-8 sequences are never
    split across lines.

    Returns:
        The attribute lines, each terminated by CRLF.
    """
    line = f"{name}: {value}".encode("utf-8")
    parts = []
    limit = MAX_LINE_BYTES
    while len(line) > limit:
        cut = _cut(line, limit)
        parts.append(line[:cut])
        line = line[cut:]
        limit = MAX_LINE_BYTES - 1
    parts.append(line)
    return (CRLF + b" ").join(parts) + CRLF


def serialize_section(attributes: Iterable[Tuple[str, str]]) -> bytes:
    """Serialize attributes followed by the blank line that ends a section."""
    return b"".join(fold_attribute(k, v) for k, v in attributes) + CRLF


class Manifest:
    """
    Ordered main attributes plus ordered per-entry sections.

    Used for both MANIFEST.MF (version attribute `Manifest-Version`) and
    signature files (`Signature-Version`). The version attribute is always
    written first; everything else keeps insertion order.
    """

    def __init__(self, version_attribute: str = MANIFEST_VERSION):
        self.version_attribute = version_attribute
        self.main_attributes: Dict[str, str] = {}
        self.sections: Dict[str, Dict[str, str]] = {}

    def set_main_attribute(self, name: str, value: str) -> None:
        check_attribute(name, value)
        self.main_attributes[name] = value

    def add_section(self, path: str, attributes: Mapping[str, str]) -> None:
        """
        Add the section for `path`.

        Raises:
            ValueError: If `path` already has a section or an attribute is invalid.
        """
        if path in self.sections:
            raise ValueError(f"Duplicate manifest section: {path}")
        check_attribute(NAME, path)
        for name, value in attributes.items():
            check_attribute(name, value)
        self.sections[path] = dict(attributes)

    def main_section_bytes(self) -> bytes:
        attributes = []
        if self.version_attribute in self.main_attributes:
            attributes.append(
                (self.version_attribute, self.main_attributes[self.version_attribute])
            )
        attributes.extend(
            (k, v) for k, v in self.main_attributes.items()
            if k != self.version_attribute
        )
        return serialize_section(attributes)

    def section_bytes(self, path: str) -> bytes:
        """Serialized bytes of the section for `path`, blank line included."""
        attributes = [(NAME, path)]
        attributes.extend(self.sections[path].items())
        return serialize_section(attributes)

    def to_bytes(self) -> bytes:
        return self.main_section_bytes() + b"".join(
            self.section_bytes(path) for path in self.sections
        )

    def entries(self, digest_algorithm: str) -> List[ManifestEntry]:
        """(path, digest) pairs for sections carrying `<ALGO>-Digest`."""
        attribute = digest_attribute(digest_algorithm)
        return [
            ManifestEntry(path, attrs[attribute])
            for path, attrs in self.sections.items()
            if attribute in attrs
        ]


def parse_manifest(data: bytes) -> Manifest:
    """
    Parse manifest or signature file bytes.

    The first block is the main section unless it starts with `Name`.
    Continuation lines are joined before decoding.

    Raises:
        ValueError: On malformed lines, duplicate attributes or sections.
    """
    blocks: List[List[bytes]] = []
    current: List[bytes] = []

    # the ": " separator may itself sit on a continuation line
    for line in data.splitlines():
        if not line:
            if current:
                blocks.append(current)
                current = []
            continue
        if line.startswith(b" "):
            if not current:
                raise ValueError("Continuation line without attribute")
            current[-1] += line[1:]
            continue
        current.append(line)
    if current:
        blocks.append(current)

    decoded = []
    for block in blocks:
        attributes: Dict[str, str] = {}
        for logical in block:
            if b": " not in logical:
                raise ValueError(f"Malformed attribute line: {logical[:40]!r}")
            raw_name, raw_value = logical.split(b": ", 1)
            name = raw_name.decode("utf-8")
            if name in attributes:
                raise ValueError(f"Duplicate attribute: {name}")
            attributes[name] = raw_value.decode("utf-8")
        decoded.append(attributes)

    main: Dict[str, str] = {}
    if decoded and next(iter(decoded[0])) != NAME:
        main = decoded.pop(0)

    version_attribute = MANIFEST_VERSION
    if SIGNATURE_VERSION in main:
        version_attribute = SIGNATURE_VERSION

    manifest = Manifest(version_attribute)
    manifest.main_attributes.update(main)
    for attributes in decoded:
        if next(iter(attributes)) != NAME:
            raise ValueError("Entry section must start with Name")
        path = attributes.pop(NAME)
        if path in manifest.sections:
            raise ValueError(f"Duplicate manifest section: {path}")
        manifest.sections[path] = attributes
    return manifest


def build_manifest(
    entries: Sequence[ManifestEntry],
    digest_algorithm: str,
    created_by: str,
    extra_attributes: Optional[Mapping[str, str]] = None,
) -> Manifest:
    """
    Assemble MANIFEST.MF from the recorded entries, in submission order.

    Args:
        entries: Recorded (path, content digest) pairs.
        digest_algorithm: Manifest digest algorithm, e.g. `SHA1`.
        created_by: Generator identifier.
        extra_attributes: Caller main attributes, written after Created-By.
    """
    manifest = Manifest(MANIFEST_VERSION)
    manifest.set_main_attribute(MANIFEST_VERSION, FORMAT_VERSION)
    manifest.set_main_attribute(CREATED_BY, created_by)
    for name, value in (extra_attributes or {}).items():
        manifest.set_main_attribute(name, value)

    attribute = digest_attribute(digest_algorithm)
    for entry in entries:
        manifest.add_section(entry.path, {attribute: entry.digest})
    return manifest


def signature_file_sections(
    manifest: Manifest, digest_algorithm: str
) -> List[SignatureFileSection]:
    """Digest every manifest section's own serialized bytes."""
    return [
        SignatureFileSection(path, digest_b64(digest_algorithm, manifest.section_bytes(path)))
        for path in manifest.sections
    ]


def build_signature_file(
    manifest: Manifest,
    digest_algorithm: str,
    created_by: str,
) -> Manifest:
    """
    Assemble the .SF signature file for a complete manifest.

    The main section carries the digest of the whole serialized manifest and
    of its main section; each entry section carries the digest of the
    matching manifest section.
    """
    signature_file = Manifest(SIGNATURE_VERSION)
    signature_file.set_main_attribute(SIGNATURE_VERSION, FORMAT_VERSION)
    signature_file.set_main_attribute(CREATED_BY, created_by)
    signature_file.set_main_attribute(
        digest_attribute(digest_algorithm, "-Manifest"),
        digest_b64(digest_algorithm, manifest.to_bytes()),
    )
    signature_file.set_main_attribute(
        digest_attribute(digest_algorithm, "-Manifest-Main-Attributes"),
        digest_b64(digest_algorithm, manifest.main_section_bytes()),
    )

    attribute = digest_attribute(digest_algorithm)
    for section in signature_file_sections(manifest, digest_algorithm):
        signature_file.add_section(section.path, {attribute: section.digest})
    return signature_file
