"""
apkresign - Archive Plumbing

Entry level ZIP reading and writing around `zipfile`:
- ArchiveWriter appends entries to a forward-only output stream
- iter_archive_entries reads an existing package in central-directory order
- resign_archive streams a package through a signer
"""

import logging
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, Callable, Iterable, Iterator, Optional, Tuple, Union

if TYPE_CHECKING:
    from .signing.signer import StreamingSigner

logger = logging.getLogger(__name__)

# 1980-01-01, the earliest ZIP timestamp, keeps output reproducible
ENTRY_DATE_TIME = (1980, 1, 1, 0, 0, 0)

EntryTransform = Callable[[str, bytes], bytes]


class ArchiveWriter:
    """
    Appends entries to a ZIP stream.

    Stored entries need their CRC-32 up front; deflated entries are
    checksummed while they are compressed.
    """

    def __init__(self, fileobj: BinaryIO):
        self._fileobj = fileobj
        self._zip = zipfile.ZipFile(fileobj, mode="w", compression=zipfile.ZIP_DEFLATED)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def write_entry(
        self,
        path: str,
        data: bytes,
        store: bool = False,
        crc: Optional[int] = None,
    ) -> None:
        """
        Append one entry.

        Args:
            path: Archive path (forward slashes).
            data: Uncompressed content.
            store: Write uncompressed instead of deflated.
            crc: CRC-32 of `data`, required when `store` is set.

        Raises:
            ValueError: If a stored entry comes without a matching CRC-32.
        """
        info = zipfile.ZipInfo(path, date_time=ENTRY_DATE_TIME)
        info.external_attr = 0o644 << 16
        if store:
            if crc is None:
                raise ValueError(f"Stored entry {path} needs a precomputed CRC-32")
            if zlib.crc32(data) != crc:
                raise ValueError(f"CRC-32 mismatch for stored entry {path}")
            info.compress_type = zipfile.ZIP_STORED
        else:
            info.compress_type = zipfile.ZIP_DEFLATED
        self._zip.writestr(info, data)

    def flush(self) -> None:
        self._fileobj.flush()

    def close(self) -> None:
        """Write the central directory. The underlying stream stays open."""
        if not self._closed:
            self._closed = True
            self._zip.close()


@dataclass
class SourceEntry:
    """One entry of an existing package."""
    path: str
    data: bytes
    compressed_size: int
    file_size: int
    compress_type: int

    @property
    def compressed(self) -> bool:
        return self.compressed_size != self.file_size


def iter_archive_entries(source: Union[str, Path, BinaryIO]) -> Iterator[SourceEntry]:
    """
    Yield every entry of a ZIP package in central-directory order.

    Each entry's content is read only when it is reached.
    """
    with zipfile.ZipFile(source) as zf:
        for info in zf.infolist():
            yield SourceEntry(
                path=info.filename,
                data=zf.read(info),
                compressed_size=info.compress_size,
                file_size=info.file_size,
                compress_type=info.compress_type,
            )


def resign_archive(
    source: Union[str, Path, BinaryIO],
    signer: "StreamingSigner",
    transform: Optional[EntryTransform] = None,
    extra_entries: Iterable[Tuple[str, bytes]] = (),
    flush: bool = True,
) -> int:
    """
    Stream an existing package through a signer.

    Entries keep their compression: an entry whose compressed size equals
    its size is written stored. Signature metadata of the source is dropped
    by the signer. The signer is not finalized.

    Args:
        source: Package to read.
        signer: StreamingSigner receiving the entries.
        transform: Optional hook rewriting an entry's content.
        extra_entries: (path, content) pairs appended compressed afterwards.
        flush: Flush the output after every entry.

    Returns:
        Number of entries written.
    """
    written = 0
    for entry in iter_archive_entries(source):
        data = entry.data
        if transform is not None:
            data = transform(entry.path, data)
        if signer.add_entry(entry.path, data, entry.compressed, flush):
            written += 1

    for path, data in extra_entries:
        if signer.add_entry(path, data, True, flush):
            written += 1

    logger.info(f"Re-signed {written} entries from {source}")
    return written
