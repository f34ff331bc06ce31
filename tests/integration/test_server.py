"""
Integration tests: a real NextWeb process layout on ephemeral ports.
"""

import logging
import re
import socket
import threading
import time
from pathlib import Path

import pytest

from nextweb import AppSettings, ConfigError, NextWeb
from nextweb.__main__ import main

from conftest import INDEX_HTML, split_response


ACCESS_LINE = re.compile(r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] 127\.0\.0\.1:\d+ - (\S+) - (\d+)$")


def http_request(address, request: bytes, timeout: float = 5.0) -> bytes:
    host, port = address
    with socket.create_connection((host, port), timeout=timeout) as sock:
        sock.sendall(request)
        chunks = []
        while True:
            chunk = sock.recv(65536)
            if not chunk:
                break
            chunks.append(chunk)
    return b"".join(chunks)


def write_configs(root: Path, servers: dict) -> str:
    """
    servers: name → per-server TOML text. Writes servers/<name>.toml and a
    top-level config.toml that refers to them by relative path.
    """
    (root / "servers").mkdir(exist_ok=True)
    entries = []
    for name, text in servers.items():
        (root / "servers" / f"{name}.toml").write_text(text, encoding="utf-8")
        entries.append(f'[[servers]]\nname = "{name}"\nconfig = "servers/{name}.toml"\n')

    config = root / "config.toml"
    config.write_text("\n".join(entries), encoding="utf-8")
    return str(config)


def static_toml(webroot: Path, port: int = 0) -> str:
    return f"""
[server]
address = "127.0.0.1"
port = {port}
timeout = 2

[type]
name = "static"

[static]
webroot = "{webroot.as_posix()}"
index = "index.html"
"""


def proxy_toml(backend: str, port: int = 0) -> str:
    return f"""
[server]
address = "127.0.0.1"
port = {port}
timeout = 2

[type]
name = "proxy"

[proxy]
backend = "{backend}"
modify_host = true
header_host = "example.com"
modify_server = true
timeout = 2
"""


@pytest.fixture
def backend(fake_backend):
    return fake_backend(response=(
        b"HTTP/1.1 200 OK\r\n"
        b"Server: upstream/1.0\r\n"
        b"Content-Length: 8\r\n"
        b"\r\n"
        b"from api"
    ))


@pytest.fixture
def config_path(tmp_path, webroot, backend):
    return write_configs(tmp_path, {
        "site": static_toml(webroot),
        "api": proxy_toml(backend.backend),
        "odd": static_toml(webroot).replace('name = "static"', 'name = "ftp"'),
    })


@pytest.fixture
def app(config_path):
    app = NextWeb(AppSettings(config_path=config_path))
    app.load()
    app.start()
    yield app
    app.shutdown()


def server(app, name):
    return next(s for s in app.servers if s.name == name)


class TestMultiServer:

    def test_static_server(self, app):
        response = http_request(server(app, "site").address, b"GET / HTTP/1.1\r\nHost: x\r\n\r\n")

        head, body = split_response(response)
        assert head.startswith(b"HTTP/1.1 200 OK\r\n")
        assert body == INDEX_HTML

    def test_proxy_server(self, app, backend):
        response = http_request(
            server(app, "api").address,
            b"GET /v1/items HTTP/1.1\r\nHost: public.test\r\n\r\n",
        )

        assert response.startswith(b"HTTP/1.1 200 OK\r\n")
        assert b"Server: nextWeb(upstream/1.0)/0.1.0\r\n" in response
        assert response.endswith(b"from api")
        assert backend.requests[0] == b"GET /v1/items HTTP/1.1\r\nHost: example.com\r\n\r\n"

    def test_unknown_type_server(self, app):
        response = http_request(server(app, "odd").address, b"GET / HTTP/1.1\r\n\r\n")
        assert response.startswith(b"HTTP/1.1 501 Not Implemented\r\n")

    def test_servers_are_independent(self, app):
        """A silent client on one server does not block another server."""
        idle = socket.create_connection(server(app, "site").address)
        try:
            start = time.monotonic()
            response = http_request(server(app, "api").address, b"GET / HTTP/1.1\r\n\r\n")

            assert response.startswith(b"HTTP/1.1 200")
            assert time.monotonic() - start < 1.5
        finally:
            idle.close()

    def test_access_log_lines(self, app, caplog):
        with caplog.at_level(logging.INFO, logger="nextweb.access"):
            http_request(server(app, "site").address, b"GET /about.html HTTP/1.1\r\n\r\n")
            http_request(server(app, "site").address, b"GET /missing HTTP/1.1\r\n\r\n")

        lines = [r.getMessage() for r in caplog.records if r.name == "nextweb.access"]
        parsed = [ACCESS_LINE.match(line).groups() for line in lines]
        assert parsed == [("/about.html", "200"), ("/missing", "404")]

    def test_startup_output(self, config_path, capsys):
        app = NextWeb(AppSettings(config_path=config_path))
        try:
            app.load()
            app.start()
            out = capsys.readouterr().out
            expected = [
                f"Server '{s.name}' listening on {s.address[0]}:{s.address[1]}"
                for s in app.servers
            ]
        finally:
            app.shutdown()

        assert out.count("Loaded configuration: ") == 3
        assert "Server type: static" in out
        assert "Server type: proxy" in out
        for line in expected:
            assert line in out


class TestWorkers:

    def test_pool_serves_concurrent_requests(self, config_path):
        app = NextWeb(AppSettings(config_path=config_path, workers=2))
        app.load()
        app.start()
        try:
            address = server(app, "site").address
            results = []

            def fetch():
                results.append(http_request(address, b"GET / HTTP/1.1\r\n\r\n"))

            threads = [threading.Thread(target=fetch) for _ in range(6)]
            for t in threads:
                t.start()
            for t in threads:
                t.join(5.0)

            assert len(results) == 6
            assert all(r.startswith(b"HTTP/1.1 200 OK") for r in results)
        finally:
            app.shutdown()


class TestStartupFailures:

    def test_bind_conflict_aborts_everything(self, tmp_path, webroot):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        taken = blocker.getsockname()[1]

        try:
            config = write_configs(tmp_path, {
                "first": static_toml(webroot),
                "second": static_toml(webroot, port=taken),
            })
            app = NextWeb(AppSettings(config_path=config))
            app.load()

            with pytest.raises(OSError):
                app.start()

            first = server(app, "first")
            assert not first.is_alive
            # Socket released: address falls back to the configured one
            assert first.address == ("127.0.0.1", 0)
        finally:
            blocker.close()

    def test_bad_server_config_fails_before_binding(self, tmp_path, webroot):
        config = write_configs(tmp_path, {
            "site": static_toml(webroot),
            "broken": "[server]\naddress = '127.0.0.1'\n",
        })
        app = NextWeb(AppSettings(config_path=config))

        with pytest.raises(ConfigError):
            app.load()
        assert app.servers == []


class TestRun:

    def test_run_until_shutdown(self, config_path, capsys):
        app = NextWeb(AppSettings(config_path=config_path))
        runner = threading.Thread(target=app.run)
        runner.start()

        try:
            deadline = time.monotonic() + 5.0
            while time.monotonic() < deadline:
                if app.servers and all(s.is_alive for s in app.servers):
                    break
                time.sleep(0.05)

            response = http_request(server(app, "site").address, b"GET / HTTP/1.1\r\n\r\n")
            assert response.startswith(b"HTTP/1.1 200 OK")
        finally:
            app.shutdown()
            runner.join(5.0)

        assert not runner.is_alive()
        assert capsys.readouterr().out.startswith("nextWeb 0.1.0\n")


class TestCLI:

    @pytest.fixture(autouse=True)
    def no_logging_setup(self, monkeypatch):
        # Keep access records propagating for the other tests' caplog
        monkeypatch.setattr("nextweb.__main__.setup_logging", lambda level: None)

    def test_missing_config_exits_1(self, tmp_path, capsys):
        assert main(["--config", str(tmp_path / "nope.toml")]) == 1
        assert "nope.toml" in capsys.readouterr().err

    def test_negative_workers_exits_1(self, config_path):
        assert main(["--config", config_path, "--workers", "-1"]) == 1

    def test_bad_environment_exits_1(self, monkeypatch):
        monkeypatch.setenv("NEXTWEB_WORKERS", "lots")
        assert main([]) == 1

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])

        assert exc_info.value.code == 0
        assert "nextWeb 0.1.0" in capsys.readouterr().out

    def test_bind_failure_exits_1(self, tmp_path, webroot):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        try:
            config = write_configs(tmp_path, {
                "site": static_toml(webroot, port=blocker.getsockname()[1]),
            })
            assert main(["--config", config]) == 1
        finally:
            blocker.close()

    def test_critical_log_level_accepted(self, config_path, monkeypatch):
        monkeypatch.setattr("nextweb.__main__.NextWeb.run", lambda self: None)
        assert main(["--config", config_path, "--log-level", "critical"]) == 0
