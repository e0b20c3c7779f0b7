"""Errors raised while assembling seeds.

Every failure during seeding is fatal for the whole startup, so callers only
need to catch :class:`SeedError`.
"""

from __future__ import annotations

from typing import Optional


class SeedError(Exception):
    """Base class for seeding failures."""

    def __init__(self, message: str, *, source: Optional[str] = None):
        super().__init__(message)
        self.source = source

    def __str__(self) -> str:
        message = super().__str__()
        if self.source:
            return f"{self.source}: {message}"
        return message


class SeedIOError(SeedError):
    """A tarball could not be opened, stat'ed or read."""


class ArchiveFormatError(SeedError):
    """The tarball is not a readable gzip-compressed tar stream."""


class ManifestNotFoundError(SeedError):
    """No package manifest entry was found in the archive."""


class ManifestParseError(SeedError):
    """The manifest entry is not a usable JSON package descriptor."""


class UpstreamFetchError(SeedError):
    """The upstream metadata document could not be fetched or decoded."""

    def __init__(self, message: str, *, source: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message, source=source)
        self.status = status


class UpstreamNotFoundError(UpstreamFetchError):
    """The upstream registry has no document for the package."""


class DuplicateSeedError(SeedError):
    """Two seeds claim the same request path."""


class SeedTimeoutError(SeedError):
    """Assembling a seed took longer than the configured limit."""
