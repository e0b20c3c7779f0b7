"""Upstream client for forwarding requests to the real registry."""

from __future__ import annotations

import json
import logging
import zlib
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Optional, Tuple

import aiohttp
from multidict import CIMultiDict

from constants import Constants
from common.logging_utils import Timer, extra_context, is_debug_enabled, safe_url

logger = logging.getLogger(__name__)

# Headers that describe a single connection and are never forwarded.
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})

# Request headers dropped in addition to the hop-by-hop set. Conditional
# validators would let upstream answer 304 for documents the client cached
# from a seeded response.
STRIPPED_REQUEST_HEADERS = frozenset({
    "host",
    "if-none-match",
    "if-modified-since",
})


class UpstreamResponseError(aiohttp.ClientError):
    """Upstream answered but the body is not what the caller needs."""

    def __init__(self, message: str, status: int):
        super().__init__(message)
        self.status = status


class UpstreamClient:
    """Client for the upstream registry.

    Owns a single aiohttp session used both for fetching metadata documents
    while seeding and for forwarding proxied requests.
    """

    def __init__(self, upstream: str = Constants.DEFAULT_UPSTREAM, timeout: float = Constants.REQUEST_TIMEOUT):
        """Initialize the upstream client.

        Args:
            upstream: Base URL of the upstream registry.
            timeout: Request timeout in seconds.
        """
        self._upstream = upstream.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        """Start the HTTP session."""
        if self._session is None:
            connector = aiohttp.TCPConnector(limit=100)
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                connector=connector,
                auto_decompress=False,
            )

    async def stop(self) -> None:
        """Stop the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    def build_url(self, path: str) -> str:
        """Build the upstream URL for a request path (query string included)."""
        request_path = path if path.startswith("/") else f"/{path}"
        return f"{self._upstream}{request_path}"

    def _build_request_headers(self, headers: Optional[Mapping[str, str]]) -> CIMultiDict:
        """Build request headers to send upstream.

        Repeated headers are forwarded as separate values.
        """
        request_headers: CIMultiDict = CIMultiDict()
        if not headers:
            return request_headers

        connection_tokens = set()
        for key, value in headers.items():
            if key.lower() == "connection":
                connection_tokens |= {token.strip().lower() for token in value.split(",")}

        for key, value in headers.items():
            key_lower = key.lower()
            if (
                key_lower in HOP_BY_HOP_HEADERS
                or key_lower in STRIPPED_REQUEST_HEADERS
                or key_lower in connection_tokens
            ):
                continue
            request_headers.add(key, value)
        return request_headers

    def filter_response_headers(self, headers: Mapping[str, Any]) -> CIMultiDict:
        """Copy upstream response headers minus hop-by-hop ones.

        Repeated headers such as ``Set-Cookie`` are kept as separate values.
        """
        connection_tokens = set()
        for key, value in headers.items():
            if key.lower() == "connection":
                connection_tokens |= {token.strip().lower() for token in str(value).split(",")}

        filtered: CIMultiDict = CIMultiDict()
        for key, value in headers.items():
            key_lower = key.lower()
            if key_lower in HOP_BY_HOP_HEADERS or key_lower in connection_tokens:
                continue
            filtered.add(key, str(value))
        return filtered

    @asynccontextmanager
    async def open_response(
        self,
        method: str,
        path: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Any = None,
    ) -> AsyncIterator[aiohttp.ClientResponse]:
        """Open an upstream response as an async context manager.

        Redirects are not followed; the caller relays them to the client.
        """
        if self._session is None:
            await self.start()
        assert self._session is not None
        url = self.build_url(path)
        response = await self._session.request(
            method,
            url,
            headers=self._build_request_headers(headers),
            data=body,
            allow_redirects=False,
        )
        try:
            yield response
        finally:
            response.release()

    async def get_json(self, path: str) -> Tuple[int, Any]:
        """GET ``path`` from upstream and decode the body as JSON.

        Returns:
            Tuple of (status code, decoded document).

        Raises:
            aiohttp.ClientError: On transport failures.
            asyncio.TimeoutError: When the request exceeds the client timeout.
            UpstreamResponseError: When the body is not valid JSON.
        """
        if self._session is None:
            await self.start()
        assert self._session is not None
        url = self.build_url(path)
        safe_target = safe_url(url)

        with Timer() as timer:
            async with self._session.get(
                url,
                headers={
                    "Accept": "application/json",
                    "Accept-Encoding": "identity",
                    "User-Agent": Constants.USER_AGENT,
                },
            ) as response:
                body = await response.read()
                status = response.status
                encoding = response.headers.get("Content-Encoding", "").lower()

        # The session keeps bodies raw for the pass-through path.
        if encoding in ("gzip", "deflate"):
            try:
                body = zlib.decompress(body, 32 + zlib.MAX_WBITS)
            except zlib.error as exc:
                raise UpstreamResponseError(
                    f"GET {safe_target} returned an undecodable {encoding} body", status
                ) from exc

        if is_debug_enabled(logger):
            logger.debug(
                "HTTP response",
                extra=extra_context(
                    event="http_response",
                    component="upstream",
                    action="GET",
                    target=safe_target,
                    status_code=status,
                    duration_ms=timer.duration_ms(),
                ),
            )

        try:
            return status, json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise UpstreamResponseError(
                f"GET {safe_target} returned {status} with a non-JSON body", status
            ) from exc

    async def __aenter__(self) -> "UpstreamClient":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.stop()
