"""Extract the package manifest from an npm tarball.

The archive is read as a stream: compressed chunks come off disk through
aiofiles, are inflated incrementally and tar headers are decoded one block at
a time. Reading stops as soon as the manifest entry has been seen.

``tarfile.open(mode="r|gz")`` is not used because it pulls from a blocking
file object, which would stall the event loop while other seeds are being
fetched. Header decoding is still done by ``tarfile.TarInfo.frombuf``, so
only the block walk (long names, pax ``path`` records, padding) lives here.
"""

from __future__ import annotations

import json
import logging
import tarfile
import zlib
from typing import Any, Dict, Optional

import aiofiles

from constants import Constants

from .errors import ArchiveFormatError, ManifestNotFoundError, ManifestParseError, SeedIOError

logger = logging.getLogger(__name__)

BLOCK_SIZE = tarfile.BLOCKSIZE
END_OF_ARCHIVE = tarfile.NUL * BLOCK_SIZE
# zlib window bits selecting the gzip container
GZIP_WBITS = 16 + zlib.MAX_WBITS


class _GzipStream:
    """Decompressed view over an open gzip file."""

    def __init__(self, f, source: str, chunk_size: int):
        self._f = f
        self._source = source
        self._chunk_size = chunk_size
        self._inflater = zlib.decompressobj(GZIP_WBITS)
        self._buffer = bytearray()
        self._exhausted = False

    async def _fill(self) -> bool:
        """Inflate more data into the buffer. Returns False at end of input."""
        while not self._exhausted:
            raw = await self._f.read(self._chunk_size)
            if not raw:
                self._exhausted = True
                if not self._inflater.eof:
                    raise ArchiveFormatError("truncated gzip stream", source=self._source)
                return False
            try:
                data = self._inflater.decompress(raw)
                # Concatenated gzip members form a single stream.
                while self._inflater.eof and self._inflater.unused_data:
                    rest = self._inflater.unused_data
                    self._inflater = zlib.decompressobj(GZIP_WBITS)
                    data += self._inflater.decompress(rest)
            except zlib.error as exc:
                raise ArchiveFormatError(f"corrupt gzip stream: {exc}", source=self._source) from exc
            if data:
                self._buffer += data
                return True
        return False

    async def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes; fewer only at end of stream."""
        while len(self._buffer) < size:
            if not await self._fill():
                break
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    async def read_exact(self, size: int) -> bytes:
        data = await self.read(size)
        if len(data) != size:
            raise ArchiveFormatError("truncated tar entry", source=self._source)
        return data

    async def skip(self, size: int) -> None:
        while size > 0:
            if not self._buffer and not await self._fill():
                raise ArchiveFormatError("truncated tar entry", source=self._source)
            step = min(size, len(self._buffer))
            del self._buffer[:step]
            size -= step


def _padded(size: int) -> int:
    """Size of an entry's data rounded up to whole tar blocks."""
    blocks, remainder = divmod(size, BLOCK_SIZE)
    if remainder:
        blocks += 1
    return blocks * BLOCK_SIZE


def _pax_path(data: bytes, source: str) -> Optional[str]:
    """Return the ``path`` record of a pax extended header, if any."""
    path = None
    pos = 0
    while pos < len(data) and data[pos:pos + 1] != tarfile.NUL:
        space = data.find(b" ", pos)
        if space == -1:
            raise ArchiveFormatError("invalid pax header", source=source)
        try:
            length = int(data[pos:space])
        except ValueError as exc:
            raise ArchiveFormatError("invalid pax header", source=source) from exc
        if length <= space - pos:
            raise ArchiveFormatError("invalid pax header", source=source)
        record = data[space + 1:pos + length - 1]
        key, _, value = record.partition(b"=")
        if key == b"path":
            path = value.decode("utf-8", "surrogateescape")
        pos += length
    return path


def is_manifest_path(name: str) -> bool:
    """True for ``<top-level dir>/package.json`` (a leading ``./`` is ignored)."""
    parts = [part for part in name.split("/") if part not in ("", ".")]
    return len(parts) == 2 and parts[1] == Constants.MANIFEST_FILE


def parse_manifest(data: bytes, source: str) -> Dict[str, Any]:
    """Decode a manifest entry and check it names a package version.

    Raises:
        ManifestParseError: On invalid UTF-8/JSON or a missing name/version.
    """
    try:
        manifest = json.loads(data.decode("utf-8-sig"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise ManifestParseError(f"invalid {Constants.MANIFEST_FILE}: {exc}", source=source) from exc

    if not isinstance(manifest, dict):
        raise ManifestParseError(f"{Constants.MANIFEST_FILE} is not a JSON object", source=source)
    for field in ("name", "version"):
        value = manifest.get(field)
        if not isinstance(value, str) or not value:
            raise ManifestParseError(
                f"{Constants.MANIFEST_FILE} has no usable '{field}'", source=source
            )
    return manifest


async def _read_manifest_entry(stream: _GzipStream, source: str) -> bytes:
    pending_name: Optional[str] = None
    while True:
        header = await stream.read(BLOCK_SIZE)
        if not header or header == END_OF_ARCHIVE:
            break
        if len(header) < BLOCK_SIZE:
            raise ArchiveFormatError("truncated tar header", source=source)
        try:
            info = tarfile.TarInfo.frombuf(header, "utf-8", "surrogateescape")
        except tarfile.HeaderError as exc:
            raise ArchiveFormatError(f"invalid tar header: {exc}", source=source) from exc

        if info.type == tarfile.GNUTYPE_LONGNAME:
            data = await stream.read_exact(_padded(info.size))
            pending_name = data[:info.size].rstrip(tarfile.NUL).decode("utf-8", "surrogateescape")
            continue
        if info.type == tarfile.XHDTYPE:
            data = await stream.read_exact(_padded(info.size))
            pending_name = _pax_path(data[:info.size], source) or pending_name
            continue
        if info.type in (tarfile.XGLTYPE, tarfile.GNUTYPE_LONGLINK):
            await stream.skip(_padded(info.size))
            continue

        name = pending_name or info.name
        pending_name = None
        has_data = info.isreg() or info.type not in tarfile.SUPPORTED_TYPES

        if info.isreg() and is_manifest_path(name):
            logger.debug("Found manifest entry %s in %s", name, source)
            data = await stream.read_exact(_padded(info.size))
            return data[:info.size]
        if has_data:
            await stream.skip(_padded(info.size))

    raise ManifestNotFoundError(
        f"no */{Constants.MANIFEST_FILE} entry in archive", source=source
    )


async def extract_manifest(path: str, chunk_size: int = Constants.READ_CHUNK_SIZE) -> Dict[str, Any]:
    """Read and parse the manifest embedded in a gzip-compressed tarball.

    Args:
        path: Path to the ``.tgz`` file.
        chunk_size: Compressed read size in bytes.

    Returns:
        The decoded manifest.

    Raises:
        SeedIOError: If the file cannot be read.
        ArchiveFormatError: On a corrupt gzip or tar stream.
        ManifestNotFoundError: If the archive has no manifest entry.
        ManifestParseError: If the manifest is not valid JSON.
    """
    try:
        async with aiofiles.open(path, "rb") as f:
            data = await _read_manifest_entry(_GzipStream(f, path, chunk_size), path)
    except OSError as exc:
        raise SeedIOError(f"cannot read tarball: {exc}", source=path) from exc
    return parse_manifest(data, path)
