"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The networking plumbing underneath the dispatcher:

    SocketServer   one listening socket + accept loop per virtual server
    Connection     wraps a client socket: bounded read, write, close
    ThreadPool     optional per-server workers for parallel connections

    ┌──────────────┐  conn   ┌──────────────┐  conn   ┌──────────────┐
    │ SocketServer │ ──────► │ (ThreadPool) │ ──────► │  Dispatcher  │
    └──────────────┘         └──────────────┘         └──────────────┘

=============================================================================
"""

from .socket_server import SocketServer
from .connection import Connection, ConnectionState, RequestTooLarge, format_peer
from .thread_pool import ThreadPool

__all__ = [
    "SocketServer",
    "Connection",
    "ConnectionState",
    "RequestTooLarge",
    "format_peer",
    "ThreadPool",
]
