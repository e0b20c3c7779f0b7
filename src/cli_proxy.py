"""CLI entry point for the overlay proxy server.

Seeds every tarball given on the command line, then starts the proxy. Seeding
happens before the listening socket is bound, so a tarball that cannot be
seeded stops the process without ever serving a request.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, Sequence

from common.logging_utils import add_file_handler, configure_logging
from constants import ExitCodes
from proxy.server import OverlayProxyServer, ProxyConfig, wait_for_shutdown_signal
from proxy.upstream import UpstreamClient
from seed.assembler import assemble_seeds
from seed.errors import SeedError
from seed.responders import ResponderRegistry, build_registry

logger = logging.getLogger(__name__)


def _setup_logging(args: Any) -> None:
    """Configure logging based on CLI arguments.

    Args:
        args: Parsed CLI arguments.
    """
    configure_logging(getattr(args, "LOG_LEVEL", None))

    # Add file handler if --logfile specified
    log_file = getattr(args, "LOG_FILE", None)
    if log_file:
        add_file_handler(log_file)
        logger.info("Logging to file: %s", log_file)


async def prepare_registry(
    config: ProxyConfig,
    tarballs: Sequence[str],
    upstream: UpstreamClient,
) -> ResponderRegistry:
    """Assemble all seeds and register their responders.

    Raises:
        SeedError: If any tarball cannot be seeded.
    """
    logger.info("Proxying to %s with local overlays:", config.upstream)
    seeds = await assemble_seeds(
        tarballs,
        upstream,
        allow_unpublished=config.allow_unpublished,
        timeout=config.seed_timeout,
    )
    return build_registry(seeds)


def _print_banner(config: ProxyConfig, server: OverlayProxyServer) -> None:
    port = config.port
    for address in server.addresses:
        if isinstance(address, tuple) and len(address) >= 2:
            port = address[1]
            break
    print(
        f"\n"
        f"  npm-overlay\n"
        f"  ===========\n"
        f"  Listening: http://{config.host}:{port}\n"
        f"  Upstream:  {config.upstream}\n"
        f"\n"
        f"  To use this registry:\n"
        f"    npm config set registry http://127.0.0.1:{port}\n"
        f"    or add --registry=http://127.0.0.1:{port} to npm commands\n"
        f"\n"
        f"  Press Ctrl+C to stop\n"
    )


async def run_overlay(config: ProxyConfig, tarballs: Sequence[str]) -> int:
    """Seed ``tarballs`` and serve until a shutdown signal arrives.

    Returns:
        Process exit code.
    """
    upstream = UpstreamClient(config.upstream, timeout=config.timeout)
    try:
        try:
            registry = await prepare_registry(config, tarballs, upstream)
        except SeedError as exc:
            logger.error("error: %s", exc)
            return ExitCodes.SEED_ERROR.value

        server = OverlayProxyServer(config, registry, upstream=upstream)
        try:
            await server.start()
        except OSError as exc:
            logger.error("Cannot listen on %s:%s: %s", config.host, config.port, exc)
            await server.stop()
            return ExitCodes.CONNECTION_ERROR.value

        _print_banner(config, server)
        try:
            await wait_for_shutdown_signal()
        finally:
            await server.stop()
        return ExitCodes.SUCCESS.value
    finally:
        await upstream.stop()


def run_proxy_server(args: Any) -> int:
    """Entry point for the proxy server command.

    Args:
        args: Parsed CLI arguments namespace.

    Returns:
        Process exit code.
    """
    _setup_logging(args)
    config = ProxyConfig.from_args(args)
    tarballs = list(getattr(args, "tarballs", []) or [])

    try:
        exit_code = asyncio.run(run_overlay(config, tarballs))
    except KeyboardInterrupt:
        # Fallback for platforms where signal handlers don't work (Windows)
        exit_code = ExitCodes.SUCCESS.value
    logger.info("Proxy server shutdown complete")
    return exit_code


if __name__ == "__main__":
    from args import parse_args  # pylint: disable=import-outside-toplevel

    sys.exit(run_proxy_server(parse_args()))
