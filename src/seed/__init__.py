"""Seeds: local package tarballs overlaid on the upstream registry.

A seed is assembled from one ``.tgz`` at startup. Its manifest is spliced into
the upstream metadata document of the package and the result is served by
handlers kept in a :class:`ResponderRegistry`.
"""

from .errors import (
    ArchiveFormatError,
    DuplicateSeedError,
    ManifestNotFoundError,
    ManifestParseError,
    SeedError,
    SeedIOError,
    SeedTimeoutError,
    UpstreamFetchError,
    UpstreamNotFoundError,
)
from .digest import compute_shasum, file_size
from .archive import extract_manifest
from .metadata import fetch_upstream_document
from .assembler import Seed, assemble_seed, assemble_seeds, merge_document
from .responders import ResponderRegistry, build_registry

__all__ = [
    "ArchiveFormatError",
    "DuplicateSeedError",
    "ManifestNotFoundError",
    "ManifestParseError",
    "SeedError",
    "SeedIOError",
    "SeedTimeoutError",
    "UpstreamFetchError",
    "UpstreamNotFoundError",
    "compute_shasum",
    "file_size",
    "extract_manifest",
    "fetch_upstream_document",
    "Seed",
    "assemble_seed",
    "assemble_seeds",
    "merge_document",
    "ResponderRegistry",
    "build_registry",
]
