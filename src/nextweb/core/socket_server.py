"""
=============================================================================
LOW-LEVEL TCP SOCKET SERVER
=============================================================================

Owns one listening socket for one virtual server and runs its accept loop.

=============================================================================
SOCKET LIFECYCLE
=============================================================================

    bind()           socket() → setsockopt() → bind() → listen()
                     Done for EVERY server before any accept loop starts,
                     so a port conflict aborts startup as a whole.

    serve_forever()  while running:
                         accept()           (1 s timeout to poll running)
                         Connection(...)    wrap the client socket
                         handler(conn)      dispatcher or thread pool

    shutdown()       running = False; the loop exits within a second
                     and the listening socket is closed.

=============================================================================
SOCKET OPTIONS
=============================================================================

SO_REUSEADDR:  restart immediately without "Address already in use" while
               old sockets sit in TIME_WAIT.
TCP_NODELAY:   send small responses immediately instead of waiting for
               Nagle's algorithm to coalesce them.

Signal handling lives in the process orchestrator, not here: signal
handlers can only be installed from the main thread, and each
SocketServer runs on its own thread.

=============================================================================
"""

import socket
import logging
import threading
from typing import Callable, Optional, Tuple

from ..config import RuntimeServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)

ACCEPT_POLL_INTERVAL = 1.0


class SocketServer:
    """
    TCP listener for a single virtual server.

    Usage:
        server = SocketServer("site", runtime_config)
        server.bind()                      # raises OSError on conflict
        server.serve_forever(dispatcher.handle)
    """

    def __init__(self, name: str, config: RuntimeServerConfig, backlog: int = 128):
        self.name = name
        self.config = config
        self.backlog = backlog

        self._socket: Optional[socket.socket] = None
        self._running = False
        self._shutdown_event = threading.Event()

    @property
    def address(self) -> Tuple[str, int]:
        """
        The bound (host, port). After bind() this reflects the real port,
        which matters when the configured port is 0.
        """
        if self._socket is not None:
            sockname = self._socket.getsockname()
            return (sockname[0], sockname[1])
        return (self.config.bind_address, self.config.bind_port)

    def _create_socket(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.config.bind_address else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)

        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        # accept() wakes up periodically so shutdown() is noticed
        sock.settimeout(ACCEPT_POLL_INTERVAL)
        return sock

    def bind(self) -> None:
        """
        Create, bind and listen.

        Raises:
            OSError: The address could not be bound (in use, permission,
                     unknown host). The socket is closed before re-raising.
        """
        sock = self._create_socket()
        address = (self.config.bind_address, self.config.bind_port)

        try:
            sock.bind(address)
            sock.listen(self.backlog)
        except OSError as e:
            logger.error(f"Server '{self.name}' failed to bind {self.config.address}: {e}")
            sock.close()
            raise

        self._socket = sock
        logger.debug(f"Server '{self.name}' bound to {self.address[0]}:{self.address[1]}")

    def serve_forever(self, connection_handler: Callable[[Connection], None]) -> None:
        """
        Accept connections until shutdown() is called.

        bind() must have been called first.
        """
        if self._socket is None:
            raise RuntimeError(f"Server '{self.name}' is not bound")

        # shutdown() may already have been requested from another thread
        self._running = not self._shutdown_event.is_set()

        try:
            self._accept_loop(connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    logger.error(f"Server '{self.name}' accept error: {e}")
                break

            conn = Connection(
                socket=client_socket,
                address=client_address,
                timeout=self.config.read_timeout,
            )

            try:
                connection_handler(conn)
            except Exception as e:
                # A handler bug must not take the whole virtual server down
                logger.exception(f"Server '{self.name}' connection handler failed: {e}")
                conn.close()

    def shutdown(self):
        """Stop the accept loop. Safe to call more than once, from any thread."""
        self._running = False
        self._shutdown_event.set()

    def close(self):
        """Close the listening socket without serving (used on aborted startup)."""
        self._cleanup()

    def _cleanup(self):
        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None
            logger.info(f"Server '{self.name}' stopped")
