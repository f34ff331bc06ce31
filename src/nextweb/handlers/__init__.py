"""
=============================================================================
RESPONDERS
=============================================================================

A virtual server is either:

    static   StaticHandler  - files from a document root
    proxy    ProxyHandler   - one fixed backend, optional header rewrites

Both take their frozen config section and return complete response bytes.

    from nextweb.handlers import StaticHandler, ProxyHandler

    static = StaticHandler(StaticConfig(webroot="./www", index="index.html"))
    payload = static.serve("/")

    proxy = ProxyHandler(ProxyConfig(backend="http://127.0.0.1:9000"))
    payload = proxy.forward(raw_request)

=============================================================================
"""

from .static import StaticHandler
from .proxy import (
    ProxyHandler,
    parse_backend,
    rewrite_host_header,
    rewrite_server_header,
)

__all__ = [
    "StaticHandler",
    "ProxyHandler",
    "parse_backend",
    "rewrite_host_header",
    "rewrite_server_header",
]
