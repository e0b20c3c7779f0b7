"""npm-overlay - serve local npm tarballs on top of an upstream registry.

    Returns:
        int: Exit code
"""
import sys

from args import parse_args
from cli_proxy import run_proxy_server


def main(argv=None):
    """Main function of the program."""
    args = parse_args(argv)
    return run_proxy_server(args)


if __name__ == "__main__":
    sys.exit(main())
