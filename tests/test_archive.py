"""
Tests for archive reading, writing and re-signing.
"""

import base64
import hashlib
import io
import zipfile
import zlib

import pytest

from apkresign.archive import ArchiveWriter, iter_archive_entries, resign_archive
from apkresign.manifest import parse_manifest
from apkresign.signing import StreamingSigner, verify_signature_block

from conftest import build_archive, read_archive

MANIFEST = "META-INF/MANIFEST.MF"
SIGNATURE_FILE = "META-INF/INTERMED.SF"
SIGNATURE_BLOCK = "META-INF/INTERMED.RSA"

DEX = b"dex\n035\x00" + b"\x00" * 2000
ARSC = bytes(range(256)) * 4


@pytest.fixture
def source_apk(tmp_path):
    """Previously signed package with a stored resource table."""
    path = tmp_path / "source.apk"
    path.write_bytes(
        build_archive(
            {
                "AndroidManifest.xml": b"<manifest/>" * 20,
                "classes.dex": DEX,
                "resources.arsc": ARSC,
                MANIFEST: b"Manifest-Version: 1.0\r\n\r\n",
                "META-INF/CERT.SF": b"Signature-Version: 1.0\r\n\r\n",
                "META-INF/CERT.RSA": b"\x30\x00",
            },
            stored={"resources.arsc"},
        )
    )
    return path


class TestArchiveWriter:
    """Tests for the ZIP writer wrapper."""

    def test_deflated_and_stored_entries(self):
        buf = io.BytesIO()
        writer = ArchiveWriter(buf)
        writer.write_entry("packed.bin", DEX)
        writer.write_entry("raw.bin", ARSC, store=True, crc=zlib.crc32(ARSC))
        writer.close()

        with zipfile.ZipFile(io.BytesIO(buf.getvalue())) as zf:
            packed = zf.getinfo("packed.bin")
            raw = zf.getinfo("raw.bin")

            assert packed.compress_type == zipfile.ZIP_DEFLATED
            assert packed.compress_size < packed.file_size
            assert raw.compress_type == zipfile.ZIP_STORED
            assert raw.CRC == zlib.crc32(ARSC)
            assert packed.date_time == (1980, 1, 1, 0, 0, 0)
            assert zf.read("raw.bin") == ARSC

    def test_stored_entry_needs_crc(self):
        writer = ArchiveWriter(io.BytesIO())

        with pytest.raises(ValueError):
            writer.write_entry("raw.bin", b"data", store=True)
        with pytest.raises(ValueError):
            writer.write_entry("raw.bin", b"data", store=True, crc=zlib.crc32(b"other"))

    def test_close_keeps_stream_open(self):
        buf = io.BytesIO()
        writer = ArchiveWriter(buf)
        writer.close()
        writer.close()

        assert writer.closed
        assert not buf.closed


class TestIterArchiveEntries:
    """Tests for reading existing packages."""

    def test_entries_in_order(self, source_apk):
        entries = list(iter_archive_entries(source_apk))

        assert [e.path for e in entries] == [
            "AndroidManifest.xml",
            "classes.dex",
            "resources.arsc",
            MANIFEST,
            "META-INF/CERT.SF",
            "META-INF/CERT.RSA",
        ]
        assert entries[1].data == DEX

    def test_compression_detected(self, source_apk):
        entries = {e.path: e for e in iter_archive_entries(source_apk)}

        assert entries["classes.dex"].compressed
        assert entries["classes.dex"].compress_type == zipfile.ZIP_DEFLATED
        assert not entries["resources.arsc"].compressed
        assert entries["resources.arsc"].compress_type == zipfile.ZIP_STORED

    def test_reads_streams(self, source_apk):
        with open(source_apk, "rb") as f:
            paths = [e.path for e in iter_archive_entries(f)]

        assert "classes.dex" in paths


class TestResignArchive:
    """Tests for re-signing an existing package."""

    def test_replaces_old_signature(self, source_apk, identity):
        buf = io.BytesIO()
        with StreamingSigner(buf, identity, close_output=False) as signer:
            written = resign_archive(source_apk, signer)

        signed = read_archive(buf.getvalue())

        assert written == 3
        assert set(signed) == {
            "AndroidManifest.xml",
            "classes.dex",
            "resources.arsc",
            MANIFEST,
            SIGNATURE_FILE,
            SIGNATURE_BLOCK,
        }
        verify_signature_block(signed[SIGNATURE_BLOCK], signed[SIGNATURE_FILE])

    def test_keeps_compression(self, source_apk, identity):
        buf = io.BytesIO()
        with StreamingSigner(buf, identity, close_output=False) as signer:
            resign_archive(source_apk, signer)

        with zipfile.ZipFile(io.BytesIO(buf.getvalue())) as zf:
            assert zf.getinfo("resources.arsc").compress_type == zipfile.ZIP_STORED
            assert zf.getinfo("classes.dex").compress_type == zipfile.ZIP_DEFLATED

    def test_transform_and_extra_entries(self, source_apk, identity):
        patched = b"dex\n039\x00patched"

        def patch_dex(path, data):
            return patched if path == "classes.dex" else data

        buf = io.BytesIO()
        with StreamingSigner(buf, identity, close_output=False) as signer:
            written = resign_archive(
                source_apk,
                signer,
                transform=patch_dex,
                extra_entries=[("assets/patch.txt", b"patched by tests")],
            )

        signed = read_archive(buf.getvalue())
        manifest = parse_manifest(signed[MANIFEST])
        expected = base64.b64encode(hashlib.sha1(patched).digest()).decode()

        assert written == 4
        assert signed["classes.dex"] == patched
        assert signed["assets/patch.txt"] == b"patched by tests"
        assert manifest.sections["classes.dex"] == {"SHA1-Digest": expected}
        assert list(manifest.sections)[-1] == "assets/patch.txt"

    def test_resign_own_output(self, source_apk, identity, tmp_path):
        first = tmp_path / "first.apk"
        with StreamingSigner(first, identity) as signer:
            resign_archive(source_apk, signer)

        second = tmp_path / "second.apk"
        with StreamingSigner(second, identity) as signer:
            resign_archive(first, signer)

        before = read_archive(first.read_bytes())
        after = read_archive(second.read_bytes())

        assert set(after) == set(before)
        assert after[MANIFEST] == before[MANIFEST]
        assert after[SIGNATURE_FILE] == before[SIGNATURE_FILE]
