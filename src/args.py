"""Argument parsing functionality for npm-overlay."""

import argparse
import os

from constants import Constants


def _env_port() -> int:
    value = os.environ.get(Constants.ENV_PORT)
    if not value:
        return Constants.DEFAULT_PORT
    try:
        return int(value)
    except ValueError as exc:
        raise SystemExit(f"Invalid {Constants.ENV_PORT}: {value!r}") from exc


def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    parser = argparse.ArgumentParser(
        prog="npm-overlay",
        description=(
            "npm registry proxy that serves local package tarballs on top of "
            "the upstream registry"
        ),
        add_help=True,
    )

    parser.add_argument("tarballs",
                        metavar="TARBALL",
                        help="Local package tarball (.tgz) to serve as the latest version of its package",
                        nargs="*",
                        default=[])
    parser.add_argument("--host",
                        dest="PROXY_HOST",
                        help=f"Address to listen on (default: {Constants.DEFAULT_HOST})",
                        action="store",
                        type=str,
                        default=Constants.DEFAULT_HOST)
    parser.add_argument("-p", "--port",
                        dest="PROXY_PORT",
                        help=f"Port to listen on (default: ${Constants.ENV_PORT} or {Constants.DEFAULT_PORT})",
                        action="store",
                        type=int,
                        default=None)
    parser.add_argument("-u", "--upstream",
                        dest="PROXY_UPSTREAM",
                        help=(
                            f"Upstream registry URL (default: ${Constants.ENV_UPSTREAM} "
                            f"or {Constants.DEFAULT_UPSTREAM})"
                        ),
                        action="store",
                        type=str,
                        default=None)
    parser.add_argument("--timeout",
                        dest="PROXY_TIMEOUT",
                        help="Timeout in seconds for upstream requests",
                        action="store",
                        type=float,
                        default=Constants.REQUEST_TIMEOUT)
    parser.add_argument("--seed-timeout",
                        dest="SEED_TIMEOUT",
                        help="Give up on startup if a tarball takes longer than this many seconds to seed",
                        action="store",
                        type=float,
                        default=None)
    parser.add_argument("--allow-unpublished",
                        dest="ALLOW_UNPUBLISHED",
                        help="Seed packages upstream has never published instead of failing",
                        action="store_true")
    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str.upper,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        default=None)
    parser.add_argument("--logfile",
                        dest="LOG_FILE",
                        help="Log output file",
                        action="store",
                        type=str)

    args = parser.parse_args(argv)
    if args.PROXY_PORT is None:
        args.PROXY_PORT = _env_port()
    if not args.PROXY_UPSTREAM:
        args.PROXY_UPSTREAM = os.environ.get(Constants.ENV_UPSTREAM) or Constants.DEFAULT_UPSTREAM
    return args
