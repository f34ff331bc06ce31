"""
=============================================================================
REVERSE PROXY HANDLER
=============================================================================

Forwards a client request to one fixed backend and relays the response,
optionally rewriting the Host request header and the Server response header.

=============================================================================
REQUEST FLOW
=============================================================================

    ┌────────┐   raw request    ┌──────────┐   (Host rewritten)  ┌─────────┐
    │ Client │ ───────────────► │ nextWeb  │ ──────────────────► │ Backend │
    │        │ ◄─────────────── │  proxy   │ ◄────────────────── │         │
    └────────┘  (Server wrapped)└──────────┘    raw response     └─────────┘

    1. Parse backend "http://host:port"  → (host, port), default port 80
    2. create_connection() with deadline → 502 on failure
    3. modify_host?   rewrite "Host:" header lines
    4. sendall()                         → 502 on failure
    5. Read the response                 → 502 if nothing arrives
    6. Drop interim 1xx heads; modify_server? wrap "Server:" header value
    7. Return bytes

Everything outside the rewritten header lines is forwarded byte for byte:
line endings, other headers, and bodies, including binary ones.

=============================================================================
HEADER REWRITES
=============================================================================

    modify_host, header_host = "example.com"

        GET / HTTP/1.1\r\n                 GET / HTTP/1.1\r\n
        Host: original.com\r\n     ──►     Host: example.com\r\n
        Accept: */*\r\n                    Accept: */*\r\n
        \r\n                               \r\n

    modify_server

        HTTP/1.1 200 OK\r\n                HTTP/1.1 200 OK\r\n
        Server: nginx/1.2\r\n      ──►     Server: nextWeb(nginx/1.2)/0.1.0\r\n

Only lines in the header block are considered. The block ends at the first
blank line, CRLF or bare LF. Header names match case-insensitively.

=============================================================================
READING THE BACKEND RESPONSE
=============================================================================

One recv() is rarely the whole response. We keep reading until one of:

    • the backend closes the connection
    • Content-Length bytes of body have arrived
    • the chunked terminator "0\\r\\n\\r\\n" has arrived
    • the response has no body (HEAD, 101, 204, 304)
    • max_response_bytes is reached (truncated, with a warning)
    • the deadline expires after some bytes arrived (relay what we have)

Interim 1xx heads (100 Continue, 103 Early Hints) are read past and not
relayed: the client receives the final response only.

Every socket operation runs under the same deadline as the connect, so a
connected but silent backend cannot block a connection forever.

=============================================================================
"""

import logging
import socket
from typing import Optional, Union

from ..config import ProxyConfig
from ..http.request import HEADER_TERMINATOR
from ..http.response import HTTPStatus, error_response


logger = logging.getLogger(__name__)

DEFAULT_BACKEND_PORT = 80

RESPONSE_BUFFER_SIZE = 8192
MAX_RESPONSE_BYTES = 10 * 1024 * 1024  # 10 MB

SERVER_HEADER_TEMPLATE = "nextWeb({})/0.1.0"

_HTTP_PREFIX = "http://"
_BARE_LF_TERMINATOR = b"\n\n"
_CHUNKED_TERMINATOR = b"0\r\n\r\n"


# =============================================================================
# BACKEND ADDRESS
# =============================================================================

def parse_backend(backend: str) -> tuple[str, int]:
    """
    Split a backend address into (host, port).

    Examples:
        "http://127.0.0.1:9000"  → ("127.0.0.1", 9000)
        "backend.local"          → ("backend.local", 80)
        "backend.local:http"     → ("backend.local", 80)   (unparsable port)
        "[::1]:9000"             → ("::1", 9000)
    """
    target = backend.strip()
    if target.startswith(_HTTP_PREFIX):
        target = target[len(_HTTP_PREFIX):]

    # Drop any path component: "host:port/prefix"
    target = target.split("/", 1)[0]

    if target.startswith("["):
        host, _, rest = target[1:].partition("]")
        port_str = rest[1:] if rest.startswith(":") else ""
    elif ":" in target:
        host, port_str = target.rsplit(":", 1)
    else:
        host, port_str = target, ""

    try:
        port = int(port_str)
    except ValueError:
        port = DEFAULT_BACKEND_PORT
    if not 0 < port < 65536:
        port = DEFAULT_BACKEND_PORT

    return host, port


# =============================================================================
# HEADER LINE REWRITING
# =============================================================================

def _split_head(message: bytes) -> tuple[bytes, bytes]:
    """
    Split into (header block, body) at the first blank line, CRLF or bare
    LF. Without a terminator it is all head.
    """
    ends = []
    for terminator in (HEADER_TERMINATOR, _BARE_LF_TERMINATOR):
        index = message.find(terminator)
        if index != -1:
            ends.append(index + len(terminator))
    if not ends:
        return message, b""

    head_end = min(ends)
    return message[:head_end], message[head_end:]


def _status_code(status_line: bytes) -> int:
    parts = status_line.split(None, 2)
    if len(parts) >= 2 and parts[1].isdigit():
        return int(parts[1])
    return 0


def _is_interim(status: int) -> bool:
    # 101 switches protocols and is final
    return 100 <= status < 200 and status != 101


def _final_head_start(response: bytes) -> int:
    """Offset of the first non-1xx response head."""
    start = 0
    while True:
        head, _ = _split_head(response[start:])
        if not _is_interim(_status_code(head.partition(b"\n")[0])):
            return start
        if len(head) == len(response) - start:
            return start
        start += len(head)


def _split_ending(line: bytes) -> tuple[bytes, bytes]:
    content = line.rstrip(b"\r\n")
    return content, line[len(content):]


def _is_header(line: bytes, name: bytes) -> bool:
    return line[:len(name)].lower() == name


def rewrite_host_header(request: bytes, header_host: str) -> bytes:
    """
    Replace every "Host:" header line with "Host: <header_host>".

    All other bytes, including each line's own terminator, are untouched.
    """
    head, body = _split_head(request)
    replacement = f"Host: {header_host}".encode("utf-8")

    lines = []
    for line in head.splitlines(keepends=True):
        if _is_header(line, b"host:"):
            _, ending = _split_ending(line)
            line = replacement + ending
        lines.append(line)

    return b"".join(lines) + body


def rewrite_server_header(response: bytes) -> bytes:
    """
    Replace the first "Server:" header line with
    "Server: nextWeb(<original>)/0.1.0".

    A response without a Server header is returned unchanged.
    """
    head, body = _split_head(response)

    lines = head.splitlines(keepends=True)
    for i, line in enumerate(lines):
        if _is_header(line, b"server:"):
            content, ending = _split_ending(line)
            value = content[len(b"server:"):].strip().decode("utf-8", errors="replace")
            wrapped = "Server: " + SERVER_HEADER_TEMPLATE.format(value)
            lines[i] = wrapped.encode("utf-8") + ending
            break

    return b"".join(lines) + body


# =============================================================================
# RESPONSE FRAMING
# =============================================================================

def _request_method(request: bytes) -> bytes:
    return request.split(b" ", 1)[0].upper()


def _response_complete(buffer: bytes, head_request: bool = False) -> bool:
    """
    Decide whether a buffered backend response is complete.

    Interim 1xx heads (100 Continue, 103 Early Hints) are skipped; the
    final response that follows them decides. Responses that end at
    connection close (no Content-Length, not chunked) are never
    "complete" here; the read loop stops on EOF instead.
    """
    head, body = _split_head(buffer[_final_head_start(buffer):])
    if not head.endswith((HEADER_TERMINATOR, _BARE_LF_TERMINATOR)):
        return False

    status_line, _, header_block = head.partition(b"\n")
    status = _status_code(status_line)
    if _is_interim(status):
        return False
    if head_request or status == 101 or status in (204, 304):
        return True

    content_length: Optional[int] = None
    chunked = False
    for line in header_block.splitlines():
        name, _, value = line.partition(b":")
        name = name.strip().lower()
        if name == b"content-length":
            try:
                content_length = int(value.strip())
            except ValueError:
                content_length = None
        elif name == b"transfer-encoding" and b"chunked" in value.lower():
            chunked = True

    if chunked:
        return buffer.endswith(_CHUNKED_TERMINATOR)
    if content_length is not None:
        return len(body) >= content_length
    return False


# =============================================================================
# HANDLER
# =============================================================================

class ProxyHandler:
    """
    Forwards requests to the configured backend.

    Usage:
        handler = ProxyHandler(ProxyConfig(backend="http://127.0.0.1:9000"))
        payload = handler.forward(raw_request_bytes)
    """

    def __init__(
        self,
        config: ProxyConfig,
        max_response_bytes: int = MAX_RESPONSE_BYTES,
    ):
        self.config = config
        self.host, self.port = parse_backend(config.backend)
        self.max_response_bytes = max_response_bytes

    def forward(self, raw_request: Union[bytes, str]) -> bytes:
        """
        Proxy one request.

        Args:
            raw_request: The request as read from the client.

        Returns:
            The backend response (possibly rewritten), or a rendered
            502 Bad Gateway if the backend could not be reached or failed.
        """
        if isinstance(raw_request, str):
            raw_request = raw_request.encode("utf-8")

        try:
            backend = socket.create_connection(
                (self.host, self.port), timeout=self.config.timeout
            )
        except OSError as e:
            logger.warning(f"Backend {self.host}:{self.port} unreachable: {e}")
            return error_response(HTTPStatus.BAD_GATEWAY)

        with backend:
            if self.config.modify_host:
                payload = rewrite_host_header(raw_request, self.config.header_host)
            else:
                payload = raw_request

            try:
                backend.sendall(payload)
            except OSError as e:
                logger.warning(f"Failed to send request to {self.host}:{self.port}: {e}")
                return error_response(HTTPStatus.BAD_GATEWAY)

            head_request = _request_method(raw_request) == b"HEAD"
            try:
                response = self._read_response(backend, head_request)
            except OSError as e:
                logger.warning(f"Failed to read response from {self.host}:{self.port}: {e}")
                return error_response(HTTPStatus.BAD_GATEWAY)

        if not response:
            logger.warning(f"Backend {self.host}:{self.port} closed without responding")
            return error_response(HTTPStatus.BAD_GATEWAY)

        # Relayed as one payload: only the final response reaches the client
        final_start = _final_head_start(response)
        if final_start:
            logger.debug(f"Dropped {final_start} bytes of interim 1xx responses")
            response = response[final_start:]

        if self.config.modify_server:
            response = rewrite_server_header(response)

        return response

    def _read_response(self, backend: socket.socket, head_request: bool) -> bytes:
        """
        Read the backend response under the configured deadline.

        The first recv() must succeed; failures after that end the relay
        with whatever has been received.
        """
        buffer = backend.recv(RESPONSE_BUFFER_SIZE)
        if not buffer:
            return b""

        while (len(buffer) < self.max_response_bytes
               and not _response_complete(buffer, head_request)):
            try:
                chunk = backend.recv(RESPONSE_BUFFER_SIZE)
            except OSError as e:
                logger.debug(f"Backend read ended early after {len(buffer)} bytes: {e}")
                break
            if not chunk:
                break
            buffer += chunk

        if len(buffer) > self.max_response_bytes:
            logger.warning(
                f"Backend response truncated to {self.max_response_bytes} bytes"
            )
            buffer = buffer[:self.max_response_bytes]

        return buffer
