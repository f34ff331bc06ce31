"""
=============================================================================
NEXTWEB - Minimal Multi-Server HTTP Front-End
=============================================================================

One process, many virtual servers. Each server binds its own socket and is
either a static file server over a document root or a reverse proxy to a
single backend with optional Host / Server header rewriting.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    nextweb/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m nextweb)
    ├── server.py            # NextWeb orchestrator, VirtualServer
    ├── config.py            # TOML loading, frozen config dataclasses
    ├── dispatcher.py        # Per-connection read → respond → log
    ├── access_log.py        # "[ts] client - path - status" lines
    ├── core/
    │   ├── socket_server.py # Listening socket + accept loop
    │   ├── connection.py    # Client socket wrapper
    │   └── thread_pool.py   # Optional per-server workers
    ├── http/
    │   ├── request.py       # Request-line path extraction
    │   ├── response.py      # Response rendering, status classification
    │   └── status_codes.py  # HTTPStatus enum
    └── handlers/
        ├── static.py        # Static file responder
        └── proxy.py         # Reverse proxy responder

=============================================================================
QUICK START
=============================================================================

    from nextweb import NextWeb, AppSettings

    NextWeb(AppSettings(config_path="config.toml")).run()

or from a shell:

    python -m nextweb --config config.toml

=============================================================================
"""

__version__ = "0.1.0"

from .config import AppSettings, ConfigError, RuntimeServerConfig
from .server import NextWeb, VirtualServer

__all__ = [
    "NextWeb",
    "VirtualServer",
    "AppSettings",
    "ConfigError",
    "RuntimeServerConfig",
    "__version__",
]
