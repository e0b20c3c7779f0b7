"""Content digest and size of local tarballs."""

from __future__ import annotations

import hashlib
import logging

import aiofiles
import aiofiles.os

from constants import Constants
from common.logging_utils import Timer, extra_context, is_debug_enabled

from .errors import SeedIOError

logger = logging.getLogger(__name__)


async def compute_shasum(path: str, chunk_size: int = Constants.READ_CHUNK_SIZE) -> str:
    """Hash a file with SHA-1 without loading it into memory.

    The npm registry publishes ``dist.shasum`` as a SHA-1 hex digest, so the
    same algorithm is used here.

    Args:
        path: Path to the file.
        chunk_size: Read size in bytes.

    Returns:
        Lowercase hexadecimal digest.

    Raises:
        SeedIOError: If the file cannot be opened or read.
    """
    digest = hashlib.sha1()
    with Timer() as timer:
        try:
            async with aiofiles.open(path, "rb") as f:
                while True:
                    chunk = await f.read(chunk_size)
                    if not chunk:
                        break
                    digest.update(chunk)
        except OSError as exc:
            raise SeedIOError(f"cannot read tarball: {exc}", source=path) from exc

    shasum = digest.hexdigest()
    if is_debug_enabled(logger):
        logger.debug(
            "Computed shasum %s",
            shasum,
            extra=extra_context(
                event="digest",
                component="seed",
                target=path,
                duration_ms=timer.duration_ms(),
            ),
        )
    return shasum


async def file_size(path: str) -> int:
    """Return the size of ``path`` in bytes.

    Raises:
        SeedIOError: If the file cannot be stat'ed.
    """
    try:
        stat = await aiofiles.os.stat(path)
    except OSError as exc:
        raise SeedIOError(f"cannot stat tarball: {exc}", source=path) from exc
    return stat.st_size
