"""Assemble seeds: local package versions spliced into upstream metadata."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Tuple

from proxy.upstream import UpstreamClient

from .archive import extract_manifest
from .digest import compute_shasum, file_size
from .errors import SeedTimeoutError, UpstreamFetchError, UpstreamNotFoundError
from .metadata import empty_document, fetch_upstream_document

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Seed:
    """A local package version served in place of upstream content.

    ``manifest`` is the tarball's package.json with ``dist.shasum`` filled in
    and ``document`` the merged metadata document. The tarball URL depends on
    the Host header of each request, so it only exists in the copies returned
    by :meth:`document_for_host`.
    """

    path: str
    shasum: str
    manifest: Dict[str, Any]
    document: Dict[str, Any]
    size: int

    @property
    def name(self) -> str:
        return self.manifest["name"]

    @property
    def version(self) -> str:
        return self.manifest["version"]

    @property
    def metadata_path(self) -> str:
        return f"/{self.name}"

    @property
    def tarball_path(self) -> str:
        return f"/{self.name}/-/{self.name}-{self.version}.tgz"

    def tarball_url(self, host: str) -> str:
        return f"http://{host}{self.tarball_path}"

    def document_for_host(self, host: str) -> Dict[str, Any]:
        """Copy of the merged document with ``dist.tarball`` pointing at ``host``."""
        versions = dict(self.document["versions"])
        entry = dict(versions[self.version])
        entry["dist"] = {**entry["dist"], "tarball": self.tarball_url(host)}
        versions[self.version] = entry
        return {**self.document, "versions": versions}


def registry_timestamp(moment: Optional[datetime] = None) -> str:
    """Format a time the way the npm registry does (``2024-01-02T03:04:05.678Z``)."""
    moment = (moment or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def _mapping(document: Dict[str, Any], key: str, name: str) -> Dict[str, Any]:
    value = document.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise UpstreamFetchError(f"upstream '{key}' is not an object", source=name)
    return value


def merge_document(
    upstream_doc: Dict[str, Any],
    manifest: Dict[str, Any],
    shasum: str,
    timestamp: str,
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Splice a local manifest into an upstream metadata document.

    Neither argument is modified; new values are returned.

    - ``versions[version]`` becomes the local manifest, replacing any
      upstream entry of the same version
    - ``dist-tags.latest`` points at the local version
    - the manifest gets ``dist.shasum``
    - ``time[version]`` and ``time.modified`` are set to ``timestamp``

    Returns:
        Tuple of (local manifest, merged document).
    """
    name = manifest["name"]
    version = manifest["version"]
    local = {**manifest, "dist": {"shasum": shasum}}

    versions = dict(_mapping(upstream_doc, "versions", name))
    versions[version] = local
    dist_tags = {**_mapping(upstream_doc, "dist-tags", name), "latest": version}
    times = {**_mapping(upstream_doc, "time", name), version: timestamp, "modified": timestamp}

    merged = {**upstream_doc, "versions": versions, "dist-tags": dist_tags, "time": times}
    merged.setdefault("name", name)
    return local, merged


async def gather_or_cancel(*aws: Awaitable[Any]) -> List[Any]:
    """Await all of ``aws``; on the first failure cancel the rest and re-raise."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def _fetch_document(client: UpstreamClient, name: str, allow_unpublished: bool) -> Dict[str, Any]:
    try:
        return await fetch_upstream_document(client, name)
    except UpstreamNotFoundError:
        if not allow_unpublished:
            raise
        logger.info(" * %s is not published upstream, starting from an empty document", name)
        return empty_document(name)


async def assemble_seed(
    path: str,
    client: UpstreamClient,
    *,
    allow_unpublished: bool = False,
    timestamp: Optional[str] = None,
) -> Seed:
    """Build the seed for one tarball.

    Digest, size and manifest extraction run concurrently; the upstream fetch
    follows the extraction because it needs the package name. The document is
    only merged once every step has succeeded.

    Args:
        path: Path to the local ``.tgz``.
        client: Client for the upstream registry.
        allow_unpublished: Start from an empty document when upstream has
            never heard of the package instead of failing.
        timestamp: Publish time recorded for the version, defaults to now.

    Raises:
        SeedError: If any step fails.
    """

    async def manifest_and_document() -> Tuple[Dict[str, Any], Dict[str, Any]]:
        manifest = await extract_manifest(path)
        document = await _fetch_document(client, manifest["name"], allow_unpublished)
        return manifest, document

    shasum, size, (manifest, document) = await gather_or_cancel(
        compute_shasum(path),
        file_size(path),
        manifest_and_document(),
    )

    name = manifest["name"]
    version = manifest["version"]
    upstream_entry = _mapping(document, "versions", name).get(version)
    if isinstance(upstream_entry, dict):
        upstream_shasum = (upstream_entry.get("dist") or {}).get("shasum")
        logger.info(" - %s@%s (upstream, %s)", name, version, upstream_shasum)

    local, merged = merge_document(document, manifest, shasum, timestamp or registry_timestamp())
    logger.info(" + %s@%s (local, %s)", name, version, shasum)
    return Seed(path=path, shasum=shasum, manifest=local, document=merged, size=size)


async def assemble_seeds(
    paths: Sequence[str],
    client: UpstreamClient,
    *,
    allow_unpublished: bool = False,
    timeout: Optional[float] = None,
) -> List[Seed]:
    """Assemble every tarball concurrently, failing fast.

    All seeds share one publish timestamp. The first failure cancels the
    remaining assemblies and propagates.

    Args:
        paths: Tarball paths.
        client: Client for the upstream registry.
        allow_unpublished: See :func:`assemble_seed`.
        timeout: Seconds allowed per seed, ``None`` for no limit.
    """
    timestamp = registry_timestamp()

    async def assemble(path: str) -> Seed:
        try:
            return await asyncio.wait_for(
                assemble_seed(path, client, allow_unpublished=allow_unpublished, timestamp=timestamp),
                timeout,
            )
        except asyncio.TimeoutError as exc:
            raise SeedTimeoutError(f"not assembled within {timeout}s", source=path) from exc

    return await gather_or_cancel(*(assemble(path) for path in paths))
