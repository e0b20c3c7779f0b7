"""Request handlers serving seeds, keyed by exact request path."""

from __future__ import annotations

import json
import logging
from typing import Awaitable, Callable, Dict, Iterator, List, Optional

import aiofiles
from aiohttp import hdrs, web

from constants import Constants

from .assembler import Seed
from .errors import DuplicateSeedError

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def make_metadata_responder(seed: Seed) -> Handler:
    """Handler answering with the merged metadata document of ``seed``."""

    async def metadata_response(request: web.Request) -> web.Response:
        # request.host is the Host header, falling back to the local address
        body = json.dumps(seed.document_for_host(request.host), separators=(",", ":"))
        logger.info("%s %s (seed %s@%s)", request.method, request.path, seed.name, seed.version)
        return web.Response(
            status=200,
            body=body.encode("utf-8"),
            content_type=Constants.CONTENT_TYPE_JSON,
        )

    return metadata_response


def make_tarball_responder(seed: Seed, chunk_size: int = Constants.READ_CHUNK_SIZE) -> Handler:
    """Handler streaming the seed's tarball from disk on every request."""

    async def tarball_response(request: web.Request) -> web.StreamResponse:
        logger.info("%s %s (seed %s@%s)", request.method, request.path, seed.name, seed.version)
        try:
            f = await aiofiles.open(seed.path, "rb")
        except OSError as exc:
            logger.error("Cannot open %s: %s", seed.path, exc)
            return web.json_response({"error": "Seed tarball unavailable"}, status=500)

        try:
            response = web.StreamResponse(
                status=200,
                headers={hdrs.CONTENT_TYPE: Constants.CONTENT_TYPE_TARBALL},
            )
            response.content_length = seed.size
            await response.prepare(request)
            if request.method != hdrs.METH_HEAD:
                while True:
                    chunk = await f.read(chunk_size)
                    if not chunk:
                        break
                    await response.write(chunk)
            await response.write_eof()
            return response
        finally:
            await f.close()

    return tarball_response


class ResponderRegistry:
    """Map from exact request path to the handler serving it.

    Built once at startup and handed to the server; entries are never
    removed.
    """

    def __init__(self) -> None:
        self._responders: Dict[str, Handler] = {}
        self._seeds: List[Seed] = []

    def register(self, path: str, handler: Handler) -> None:
        """Install ``handler`` for ``path``.

        Raises:
            DuplicateSeedError: If the path already has a handler.
        """
        if path in self._responders:
            raise DuplicateSeedError(f"path {path} is already served by another seed", source=path)
        self._responders[path] = handler

    def register_seed(self, seed: Seed) -> None:
        """Install the metadata handler (with and without trailing slash)
        and the tarball handler of ``seed``.

        Raises:
            DuplicateSeedError: If another seed already claims one of the paths.
        """
        metadata = make_metadata_responder(seed)
        routes = {
            seed.metadata_path: metadata,
            seed.metadata_path + "/": metadata,
            seed.tarball_path: make_tarball_responder(seed),
        }
        for path in routes:
            if path in self._responders:
                raise DuplicateSeedError(
                    f"{seed.name} is seeded more than once", source=seed.path
                )
        for path, handler in routes.items():
            self.register(path, handler)
        self._seeds.append(seed)

    def lookup(self, path: str) -> Optional[Handler]:
        """Handler registered for exactly ``path``, or None."""
        return self._responders.get(path)

    @property
    def seeds(self) -> List[Seed]:
        return list(self._seeds)

    def paths(self) -> List[str]:
        return sorted(self._responders)

    def __contains__(self, path: object) -> bool:
        return path in self._responders

    def __len__(self) -> int:
        return len(self._responders)

    def __iter__(self) -> Iterator[str]:
        return iter(self._responders)


def build_registry(seeds: List[Seed]) -> ResponderRegistry:
    """Registry serving every seed in ``seeds``."""
    registry = ResponderRegistry()
    for seed in seeds:
        registry.register_seed(seed)
    return registry
