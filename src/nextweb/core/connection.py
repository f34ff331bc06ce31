"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

Wraps an accepted client socket with the few operations the dispatcher
needs: one bounded request read, one response write, and a clean close.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL!
=============================================================================

A single recv() may return only part of what the client sent:

    Client sends:
        GET /index.html HTTP/1.1\r\nHost: localhost\r\n\r\n

    Server might receive:
        First recv():  "GET /index.ht"         (incomplete!)
        Second recv(): "ml HTTP/1.1\r\n..."    (rest)

=============================================================================
THE BOUNDED READ
=============================================================================

nextWeb routes on the request line and forwards the head to a backend, so
what it needs is the header block:

    ┌─────────────────────────────────────────────────────────────────┐
    │                    read_request() Flow                           │
    ├─────────────────────────────────────────────────────────────────┤
    │                                                                  │
    │   recv(buffer_size)          ← one read, like a classic server   │
    │        │                                                         │
    │        ├── empty → client closed, return b""                    │
    │        │                                                         │
    │        ├── contains \r\n\r\n → done                              │
    │        │                                                         │
    │        └── otherwise keep reading until one of:                  │
    │               • \r\n\r\n seen            → done                  │
    │               • client closed / timeout  → done with what we have│
    │               • > max_header_bytes       → RequestTooLarge       │
    │                                                                  │
    └─────────────────────────────────────────────────────────────────┘

Body bytes that arrive together with the head are kept and forwarded.
The body is never read beyond that; there is no request buffering.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    NEW ──► READING ──► PROCESSING ──► WRITING ──► CLOSING ──► CLOSED
               │                                     ▲
               └────────── read failed ──────────────┘

One request per connection; there is no keep-alive.

=============================================================================
"""

import socket
import time
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..http.request import find_header_end


logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"

DEFAULT_BUFFER_SIZE = 1024
DEFAULT_MAX_HEADER_BYTES = 8192

# Upper bound on unread client bytes discarded while closing.
_DRAIN_LIMIT = 64 * 1024


class RequestTooLarge(ValueError):
    """Raised when the request head does not fit in max_header_bytes."""


class ConnectionState(Enum):
    """Connection lifecycle states."""
    NEW = "new"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    CLOSING = "closing"
    CLOSED = "closed"


def format_peer(address: Any) -> str:
    """
    Render a socket address as "ip:port" ("[ip]:port" for IPv6).

    Anything that is not an (ip, port, ...) tuple renders as "unknown".
    """
    if not isinstance(address, tuple) or len(address) < 2:
        return UNKNOWN_CLIENT

    host, port = address[0], address[1]
    if ":" in str(host):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


@dataclass
class Connection:
    """
    A single client connection.

    Attributes:
        socket: The client socket.
        address: Peer address as returned by accept(), if known.
        id: Short identifier for diagnostic logs.
        buffer_size: Size of each recv() call.
        timeout: Socket timeout for reads and writes, in seconds.
        max_header_bytes: Upper bound for the request head.
    """

    socket: socket.socket
    address: Optional[tuple] = None

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)

    buffer_size: int = DEFAULT_BUFFER_SIZE
    timeout: Optional[float] = 30.0
    max_header_bytes: int = DEFAULT_MAX_HEADER_BYTES

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    @property
    def client_address(self) -> str:
        """Peer as "ip:port", falling back to "unknown"."""
        address = self.address
        if address is None:
            try:
                address = self.socket.getpeername()
            except OSError:
                return UNKNOWN_CLIENT
        return format_peer(address)

    @property
    def age(self) -> float:
        """Connection age in seconds."""
        return time.time() - self.created_at

    # =========================================================================
    # READING
    # =========================================================================

    def read_request(self) -> bytes:
        """
        Read the request head from the socket.

        Returns:
            The bytes received, b"" if the client closed without sending.

        Raises:
            OSError / socket.timeout: The first read failed.
            RequestTooLarge: No header terminator within max_header_bytes.
        """
        self.state = ConnectionState.READING

        buffer = self.socket.recv(self.buffer_size)
        if not buffer:
            return b""

        while find_header_end(buffer) == -1:
            if len(buffer) > self.max_header_bytes:
                raise RequestTooLarge(
                    f"Request head exceeds {self.max_header_bytes} bytes"
                )
            try:
                chunk = self.socket.recv(self.buffer_size)
            except socket.timeout:
                logger.debug(f"[{self.id}] Timed out waiting for end of headers")
                break
            if not chunk:
                break
            buffer += chunk

        if find_header_end(buffer) == -1 and len(buffer) > self.max_header_bytes:
            raise RequestTooLarge(f"Request head exceeds {self.max_header_bytes} bytes")

        return buffer

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_response(self, data: bytes) -> bool:
        """
        Send the full response payload.

        Best effort: failures are logged at DEBUG and reported through the
        return value only.
        """
        self.state = ConnectionState.WRITING
        try:
            self.socket.sendall(data)
            return True
        except OSError as e:
            logger.debug(f"[{self.id}] Send failed: {e}")
            return False

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Close the connection.

        shutdown(SHUT_WR) sends FIN, a short drain discards anything the
        client still sends, then the descriptor is released.
        """
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass

        try:
            self.socket.settimeout(0.5)
            drained = 0
            while drained < _DRAIN_LIMIT:
                chunk = self.socket.recv(4096)
                if not chunk:
                    break
                drained += len(chunk)
        except OSError:
            pass

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.age:.3f}s")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
