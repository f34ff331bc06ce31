"""
=============================================================================
CONFIGURATION
=============================================================================

Loads the server list and the per-server configuration files.

=============================================================================
TWO LEVELS OF CONFIGURATION
=============================================================================

    config.toml                         (top level: which servers exist)
    ─────────────────────────────────────────────────────────────────
    [[servers]]
    name = "site"
    config = "servers/site.toml"        ← resolved relative to config.toml

    [[servers]]
    name = "api"
    config = "servers/api.toml"


    servers/site.toml                   servers/api.toml
    ──────────────────────────          ──────────────────────────────
    [server]                            [server]
    address = "0.0.0.0"                 address = "0.0.0.0"
    port = 8080                         port = 8081

    [type]                              [type]
    name = "static"                     name = "proxy"

    [static]                            [proxy]
    webroot = "./www"                   backend = "http://127.0.0.1:9000"
    index = "index.html"                modify_host = true
                                        header_host = "example.com"
                                        modify_server = true

=============================================================================
IMMUTABILITY
=============================================================================

Every config object is a frozen dataclass. A RuntimeServerConfig is loaded
once at startup and then read concurrently by every connection (and every
worker thread) of its server without any locking. Nothing may mutate it
after load.

=============================================================================
FAIL-FAST
=============================================================================

Any problem with either level of configuration raises ConfigError before a
single socket is bound. A missing [static]/[proxy] section is NOT an error
here: the dispatcher answers 500 for it at request time.

=============================================================================
"""

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional


DEFAULT_CONFIG_PATH = "config.toml"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DEFAULT_READ_TIMEOUT = 30.0
DEFAULT_PROXY_TIMEOUT = 5.0


class ConfigError(ValueError):
    """
    Raised when a configuration file cannot be read or is invalid.

    Attributes:
        path: The offending file.
    """

    def __init__(self, path: str, message: str):
        self.path = str(path)
        super().__init__(f"{path}: {message}")


@dataclass(frozen=True)
class ServerDescriptor:
    """One entry of the top-level server list."""

    name: str
    config_path: str


@dataclass(frozen=True)
class StaticConfig:
    """Document root and index file of a static server."""

    webroot: str
    index: str


@dataclass(frozen=True)
class ProxyConfig:
    """
    Backend and header-rewrite settings of a proxy server.

    backend:        host[:port], optionally prefixed with "http://"
    modify_host:    rewrite the request Host header to header_host
    header_host:    replacement Host value
    modify_server:  wrap the backend Server header as nextWeb(<orig>)/0.1.0
    timeout:        deadline in seconds for connect, write and read
    """

    backend: str
    modify_host: bool = False
    header_host: str = ""
    modify_server: bool = False
    timeout: float = DEFAULT_PROXY_TIMEOUT


@dataclass(frozen=True)
class RuntimeServerConfig:
    """
    Everything a virtual server needs at runtime.

    Exactly one of static_config / proxy_config is expected to match
    server_type; when it does not, requests are answered with 500.
    """

    bind_address: str
    bind_port: int
    server_type: str
    static_config: Optional[StaticConfig] = None
    proxy_config: Optional[ProxyConfig] = None
    read_timeout: float = DEFAULT_READ_TIMEOUT

    @property
    def address(self) -> str:
        """Bind address as host:port, for banners and logs."""
        return f"{self.bind_address}:{self.bind_port}"


@dataclass
class AppSettings:
    """
    Process-level settings: where to find the server list, how to log,
    and how many workers each server gets.

    Priority (highest to lowest):
        1. Command-line arguments
        2. Environment variables (NEXTWEB_*)
        3. Defaults below
    """

    config_path: str = DEFAULT_CONFIG_PATH
    log_level: str = "INFO"

    workers: int = 0
    """
    Worker threads per server. 0 handles each server's connections one at a
    time on its accept thread; N > 0 uses a pool of N..2N threads.
    """

    @classmethod
    def from_env(cls) -> "AppSettings":
        """
        Create settings from environment variables.

        NEXTWEB_CONFIG      Top-level config file (default: config.toml)
        NEXTWEB_LOG_LEVEL   Logging level (default: INFO)
        NEXTWEB_WORKERS     Worker threads per server (default: 0)
        """
        return cls(
            config_path=os.getenv("NEXTWEB_CONFIG", DEFAULT_CONFIG_PATH),
            log_level=os.getenv("NEXTWEB_LOG_LEVEL", "INFO"),
            workers=int(os.getenv("NEXTWEB_WORKERS", "0")),
        )

    def validate(self) -> None:
        """Fail fast on nonsensical settings."""
        if self.workers < 0:
            raise ValueError(f"workers must be >= 0, got {self.workers}")

        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {self.log_level}")


# =============================================================================
# LOADING
# =============================================================================

def _read_toml(path: Path) -> dict:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except OSError as e:
        raise ConfigError(path, f"cannot open file ({e.strerror or e})") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(path, f"invalid TOML ({e})") from e


def _table(data: dict, key: str, path: Path, required: bool = True) -> Optional[dict]:
    value = data.get(key)
    if value is None:
        if required:
            raise ConfigError(path, f"missing [{key}] section")
        return None
    if not isinstance(value, dict):
        raise ConfigError(path, f"[{key}] must be a table")
    return value


def _field(table: dict, key: str, kind: type, path: Path, section: str,
           default: Any = ...) -> Any:
    if key not in table:
        if default is ...:
            raise ConfigError(path, f"missing '{section}.{key}'")
        return default

    value = table[key]
    # bool is an int subclass; never accept it where a number is expected
    if kind in (int, float) and isinstance(value, bool):
        raise ConfigError(path, f"'{section}.{key}' must be a {kind.__name__}")
    if kind is float and isinstance(value, int):
        value = float(value)
    if not isinstance(value, kind):
        raise ConfigError(path, f"'{section}.{key}' must be a {kind.__name__}")
    return value


def load_server_list(path: str) -> list[ServerDescriptor]:
    """
    Load the top-level server list.

    Relative per-server config paths are resolved against the directory
    of the top-level file.

    Raises:
        ConfigError: File missing, unparsable, or entries malformed.
    """
    config_file = Path(path)
    data = _read_toml(config_file)

    servers = data.get("servers")
    if not isinstance(servers, list):
        raise ConfigError(config_file, "missing [[servers]] list")

    descriptors = []
    for i, entry in enumerate(servers):
        if not isinstance(entry, dict):
            raise ConfigError(config_file, f"servers[{i}] must be a table")

        name = _field(entry, "name", str, config_file, f"servers[{i}]")
        server_config = _field(entry, "config", str, config_file, f"servers[{i}]")

        resolved = Path(server_config)
        if not resolved.is_absolute():
            resolved = config_file.parent / resolved

        descriptors.append(ServerDescriptor(name=name, config_path=str(resolved)))

    return descriptors


def load_server_config(path: str) -> RuntimeServerConfig:
    """
    Load and validate one per-server configuration file.

    Raises:
        ConfigError: File missing, unparsable, or required keys invalid.
    """
    config_file = Path(path)
    data = _read_toml(config_file)

    server = _table(data, "server", config_file)
    address = _field(server, "address", str, config_file, "server")
    port = _field(server, "port", int, config_file, "server")
    if not 0 <= port <= 65535:
        raise ConfigError(config_file, f"invalid port {port}, must be 0-65535")
    read_timeout = _field(server, "timeout", float, config_file, "server",
                          default=DEFAULT_READ_TIMEOUT)
    if read_timeout <= 0:
        raise ConfigError(config_file, "'server.timeout' must be > 0")

    type_info = _table(data, "type", config_file)
    server_type = _field(type_info, "name", str, config_file, "type")

    static_config = None
    static = _table(data, "static", config_file, required=False)
    if static is not None:
        static_config = StaticConfig(
            webroot=_field(static, "webroot", str, config_file, "static"),
            index=_field(static, "index", str, config_file, "static"),
        )

    proxy_config = None
    proxy = _table(data, "proxy", config_file, required=False)
    if proxy is not None:
        proxy_config = ProxyConfig(
            backend=_field(proxy, "backend", str, config_file, "proxy"),
            modify_host=_field(proxy, "modify_host", bool, config_file, "proxy", default=False),
            header_host=_field(proxy, "header_host", str, config_file, "proxy", default=""),
            modify_server=_field(proxy, "modify_server", bool, config_file, "proxy", default=False),
            timeout=_field(proxy, "timeout", float, config_file, "proxy",
                           default=DEFAULT_PROXY_TIMEOUT),
        )
        if proxy_config.modify_host and not proxy_config.header_host:
            raise ConfigError(config_file, "'proxy.header_host' is required when modify_host is set")
        if proxy_config.timeout <= 0:
            raise ConfigError(config_file, "'proxy.timeout' must be > 0")

    return RuntimeServerConfig(
        bind_address=address,
        bind_port=port,
        server_type=server_type,
        static_config=static_config,
        proxy_config=proxy_config,
        read_timeout=read_timeout,
    )
