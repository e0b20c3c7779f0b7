"""npm-overlay proxy server package.

This package provides the HTTP side of the overlay: a server that answers
seeded package paths locally and streams every other request to the upstream
registry.
"""

from .upstream import UpstreamClient
from .server import OverlayProxyServer, ProxyConfig

__all__ = [
    "UpstreamClient",
    "OverlayProxyServer",
    "ProxyConfig",
]
