"""Registry overlay proxy server using aiohttp."""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, List, Optional

import aiohttp
from aiohttp import web

from constants import Constants
from .upstream import UpstreamClient

if TYPE_CHECKING:
    from seed.responders import ResponderRegistry

logger = logging.getLogger(__name__)


@dataclass
class ProxyConfig:
    """Configuration for the proxy server."""

    host: str = Constants.DEFAULT_HOST
    port: int = Constants.DEFAULT_PORT
    upstream: str = Constants.DEFAULT_UPSTREAM
    timeout: float = Constants.REQUEST_TIMEOUT
    seed_timeout: Optional[float] = None
    allow_unpublished: bool = False

    @classmethod
    def from_args(cls, args: Any) -> "ProxyConfig":
        """Create config from CLI arguments.

        Args:
            args: Parsed CLI arguments namespace.

        Returns:
            ProxyConfig instance.
        """
        config = cls(
            host=getattr(args, "PROXY_HOST", Constants.DEFAULT_HOST),
            port=getattr(args, "PROXY_PORT", Constants.DEFAULT_PORT),
            timeout=getattr(args, "PROXY_TIMEOUT", Constants.REQUEST_TIMEOUT),
            seed_timeout=getattr(args, "SEED_TIMEOUT", None),
            allow_unpublished=bool(getattr(args, "ALLOW_UNPUBLISHED", False)),
        )

        # Override upstream if provided
        if getattr(args, "PROXY_UPSTREAM", None):
            config.upstream = args.PROXY_UPSTREAM.rstrip("/")

        return config


class OverlayProxyServer:
    """HTTP proxy server for the npm registry.

    Requests whose path is registered in the responder registry are answered
    locally; everything else is streamed to and from the upstream registry
    unchanged.
    """

    def __init__(
        self,
        config: ProxyConfig,
        registry: Optional["ResponderRegistry"] = None,
        upstream: Optional[UpstreamClient] = None,
    ):
        """Initialize the proxy server.

        Args:
            config: Server configuration.
            registry: Seed responders; an empty registry proxies everything.
            upstream: Upstream client, created from ``config`` when omitted.
        """
        if registry is None:
            from seed.responders import ResponderRegistry  # pylint: disable=import-outside-toplevel
            registry = ResponderRegistry()
        self._config = config
        self._registry = registry
        self._upstream = upstream or UpstreamClient(config.upstream, timeout=config.timeout)
        self._app: Optional[web.Application] = None
        self._runner: Optional[web.AppRunner] = None

    @property
    def registry(self) -> "ResponderRegistry":
        return self._registry

    def _create_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = web.Application()
        app.router.add_route("*", "/{path:.*}", self._handle_request)
        app.on_startup.append(self._on_startup)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def _on_startup(self, app: web.Application) -> None:
        """Called when the server starts."""
        await self._upstream.start()
        logger.info("Proxy server starting on %s:%s", self._config.host, self._config.port)

    async def _on_cleanup(self, app: web.Application) -> None:
        """Called when the server stops."""
        await self._upstream.stop()
        logger.info("Proxy server stopped")

    async def _handle_request(self, request: web.Request) -> web.StreamResponse:
        """Serve a seed responder on an exact path match, otherwise proxy.

        Args:
            request: Incoming HTTP request.

        Returns:
            HTTP response.
        """
        responder = self._registry.lookup(request.path)
        if responder is not None:
            return await responder(request)
        return await self._forward_request(request)

    async def _forward_request(self, request: web.Request) -> web.StreamResponse:
        """Forward request to upstream, streaming both bodies.

        Args:
            request: Original request.

        Returns:
            Response relayed from upstream, or 500 if upstream is unreachable.
        """
        path_qs = request.rel_url.raw_path_qs
        logger.info("%s %s", request.method, path_qs)

        body = None
        if request.body_exists:
            body = request.content

        response: Optional[web.StreamResponse] = None
        try:
            async with self._upstream.open_response(
                request.method,
                path_qs,
                headers=request.headers,
                body=body,
            ) as upstream_response:
                response = web.StreamResponse(
                    status=upstream_response.status,
                    reason=upstream_response.reason,
                    headers=self._upstream.filter_response_headers(upstream_response.headers),
                )
                await response.prepare(request)
                async for chunk in upstream_response.content.iter_chunked(Constants.READ_CHUNK_SIZE):
                    await response.write(chunk)
                await response.write_eof()
                return response
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            if response is not None and response.prepared:
                # Headers are already on the wire; all that is left is to drop
                # the connection.
                logger.error("Upstream failed mid-response for %s %s: %s", request.method, path_qs, exc)
                raise
            logger.error("error doing %s %s: %s", request.method, path_qs, exc)
            return self._error_response("Upstream request failed", exc)

    @staticmethod
    def _error_response(message: str, exc: BaseException) -> web.Response:
        """Generic server error for a request that could not be proxied."""
        return web.json_response(
            {"error": message, "detail": str(exc) or exc.__class__.__name__},
            status=500,
        )

    async def start(self) -> None:
        """Start the proxy server."""
        self._app = self._create_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        site = web.TCPSite(
            self._runner,
            self._config.host,
            self._config.port,
        )
        await site.start()

        logger.info(
            "Listening on http://%s:%s",
            self._config.host, self._config.port,
        )
        logger.info("Upstream: %s", self._config.upstream)

    @property
    def addresses(self) -> List[Any]:
        """Socket addresses the server is bound to (empty before start)."""
        return list(self._runner.addresses) if self._runner else []

    async def stop(self) -> None:
        """Stop the proxy server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._app = None


async def wait_for_shutdown_signal() -> None:
    """Block until SIGTERM or SIGINT is received."""
    stop_event = asyncio.Event()
    running_loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            running_loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows; KeyboardInterrupt still reaches the caller
            pass
    await stop_event.wait()
    logger.info("Shutdown signal received, stopping...")
