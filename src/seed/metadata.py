"""Fetch a package's metadata document from the upstream registry."""

from __future__ import annotations

import asyncio
import logging
import urllib.parse
from typing import Any, Dict

import aiohttp

from common.logging_utils import safe_url
from proxy.upstream import UpstreamClient, UpstreamResponseError

from .errors import UpstreamFetchError, UpstreamNotFoundError

logger = logging.getLogger(__name__)


def metadata_request_path(name: str) -> str:
    """Registry path of a package document (``@scope/pkg`` -> ``/@scope%2fpkg``)."""
    return "/" + urllib.parse.quote(name, safe="@").replace("%2F", "%2f")


def empty_document(name: str) -> Dict[str, Any]:
    """Metadata document of a package that has never been published."""
    return {"name": name, "versions": {}, "dist-tags": {}, "time": {}}


async def fetch_upstream_document(client: UpstreamClient, name: str) -> Dict[str, Any]:
    """Fetch and decode the full metadata document for ``name``.

    Nothing is retried: any failure aborts seeding of the package.

    Raises:
        UpstreamNotFoundError: If upstream answers 404.
        UpstreamFetchError: On transport errors, timeouts, non-2xx answers or
            a body that is not a JSON object.
    """
    path = metadata_request_path(name)
    target = safe_url(client.build_url(path))
    logger.debug("Fetching upstream document %s", target)

    try:
        status, document = await client.get_json(path)
    except UpstreamResponseError as exc:
        if exc.status == 404:
            raise UpstreamNotFoundError(f"not found at {target}", source=name, status=404) from exc
        raise UpstreamFetchError(str(exc), source=name, status=exc.status) from exc
    except asyncio.TimeoutError as exc:
        raise UpstreamFetchError(f"timed out fetching {target}", source=name) from exc
    except aiohttp.ClientError as exc:
        raise UpstreamFetchError(f"cannot fetch {target}: {exc}", source=name) from exc

    if status == 404:
        raise UpstreamNotFoundError(f"not found at {target}", source=name, status=status)
    if not 200 <= status < 300:
        raise UpstreamFetchError(f"GET {target} returned {status}", source=name, status=status)
    if not isinstance(document, dict):
        raise UpstreamFetchError(f"GET {target} did not return a JSON object", source=name, status=status)
    return document
