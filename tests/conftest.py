"""
pytest configuration and fixtures.
"""

import socket
import threading
import time
from pathlib import Path
from typing import Generator, Optional, Union

import pytest

# Add src to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from nextweb.config import ProxyConfig, RuntimeServerConfig, StaticConfig
from nextweb.core.connection import Connection
from nextweb.http.request import find_header_end


INDEX_HTML = b"<!DOCTYPE html>\n<html><body><h1>nextWeb</h1></body></html>\n"
ABOUT_HTML = "<p>About us: café</p>\r\n".encode("utf-8")


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /index.html HTTP/1.1\r\n"
        b"Host: original.com\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: */*\r\n"
        b"\r\n"
    )


@pytest.fixture
def webroot(tmp_path: Path) -> Path:
    """A document root with an index, a page, a subdirectory and a binary file."""
    root = tmp_path / "www"
    root.mkdir()
    (root / "index.html").write_bytes(INDEX_HTML)
    (root / "about.html").write_bytes(ABOUT_HTML)
    (root / "docs").mkdir()
    (root / "docs" / "guide.html").write_bytes(b"<p>guide</p>")
    (root / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n\x00\xff\xfe")

    # Outside the webroot, reachable only through traversal
    (tmp_path / "secret.txt").write_bytes(b"top secret")
    return root


@pytest.fixture
def static_config(webroot: Path) -> StaticConfig:
    return StaticConfig(webroot=str(webroot), index="index.html")


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def make_runtime_config(server_type: str, static: Optional[StaticConfig] = None,
                        proxy: Optional[ProxyConfig] = None) -> RuntimeServerConfig:
    return RuntimeServerConfig(
        bind_address="127.0.0.1",
        bind_port=0,
        server_type=server_type,
        static_config=static,
        proxy_config=proxy,
        read_timeout=2.0,
    )


class ClientPair:
    """
    A connected socket pair: the test drives `client`, the code under test
    gets a Connection wrapping the other end.
    """

    def __init__(self, timeout: float = 2.0, **connection_kwargs):
        self.client, server_side = socket.socketpair()
        self.client.settimeout(5.0)
        self.connection = Connection(
            socket=server_side,
            address=("10.0.0.7", 51544),
            timeout=timeout,
            **connection_kwargs,
        )

    def send(self, data: bytes, finish: bool = True):
        self.client.sendall(data)
        if finish:
            self.client.shutdown(socket.SHUT_WR)

    def read_all(self) -> bytes:
        chunks = []
        while True:
            chunk = self.client.recv(65536)
            if not chunk:
                break
            chunks.append(chunk)
        return b"".join(chunks)

    def close(self):
        self.client.close()
        self.connection.close()


@pytest.fixture
def client_pair() -> Generator[ClientPair, None, None]:
    pair = ClientPair()
    yield pair
    pair.close()


class FakeBackend:
    """
    Minimal upstream server running in a background thread.

    Records each request head it receives and answers with a canned
    response, then closes the connection unless `close_after` is False.
    The response is sent in `chunks` equal pieces, or as the given list of
    parts with `delay` seconds between them. A `silent` backend never
    answers.
    """

    def __init__(self, response: Union[bytes, list[bytes]] = b"", chunks: int = 1,
                 silent: bool = False, close_after: bool = True, delay: float = 0.0):
        self.response = response
        self.delay = delay
        self.chunks = max(1, chunks)
        self.silent = silent
        self.close_after = close_after
        self.requests: list[bytes] = []

        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind(("127.0.0.1", 0))
        self._sock.listen(8)
        self._sock.settimeout(0.2)
        self._running = True
        self._held: list[socket.socket] = []
        self._thread = threading.Thread(target=self._serve, daemon=True)

    @property
    def port(self) -> int:
        return self._sock.getsockname()[1]

    @property
    def backend(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    def start(self) -> "FakeBackend":
        self._thread.start()
        return self

    def _serve(self):
        while self._running:
            try:
                conn, _ = self._sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            self._handle(conn)

    def _handle(self, conn: socket.socket):
        conn.settimeout(2.0)
        data = b""
        try:
            while find_header_end(data) == -1:
                chunk = conn.recv(4096)
                if not chunk:
                    break
                data += chunk
        except OSError:
            pass
        self.requests.append(data)

        if self.silent:
            self._held.append(conn)
            return

        try:
            for i, part in enumerate(self._parts()):
                if i and self.delay:
                    time.sleep(self.delay)
                conn.sendall(part)
        except OSError:
            pass

        if self.close_after:
            conn.close()
        else:
            self._held.append(conn)

    def _parts(self) -> list[bytes]:
        if isinstance(self.response, list):
            return self.response
        size = -(-len(self.response) // self.chunks) or 1
        return [self.response[i:i + size] for i in range(0, len(self.response), size)]

    def stop(self):
        self._running = False
        self._thread.join(timeout=2.0)
        self._sock.close()
        for conn in self._held:
            conn.close()


@pytest.fixture
def fake_backend():
    """Factory fixture: fake_backend(response=..., chunks=..., silent=...)."""
    started: list[FakeBackend] = []

    def factory(**kwargs) -> FakeBackend:
        backend = FakeBackend(**kwargs).start()
        started.append(backend)
        return backend

    yield factory

    for backend in started:
        backend.stop()


def split_response(payload: bytes) -> tuple[bytes, bytes]:
    """Split a rendered response into (head, body)."""
    head_end = find_header_end(payload)
    assert head_end != -1, f"no header terminator in {payload!r}"
    return payload[:head_end], payload[head_end:]
