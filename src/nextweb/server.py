"""
=============================================================================
NEXTWEB PROCESS ORCHESTRATOR
=============================================================================

Ties configuration, listening sockets, worker threads and the dispatcher
together into a running multi-server process.

=============================================================================
ARCHITECTURE OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                              NextWeb                                 │
    │                          (main thread)                               │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   config.toml ──► [ServerDescriptor, ...]                            │
    │                         │                                            │
    │                         ▼  one per descriptor                        │
    │   ┌───────────────────────────────┐   ┌───────────────────────────┐ │
    │   │ VirtualServer "site"          │   │ VirtualServer "api"       │ │
    │   │  RuntimeServerConfig (frozen) │   │  RuntimeServerConfig      │ │
    │   │  SocketServer  :8080          │   │  SocketServer  :8081      │ │
    │   │  Dispatcher    static         │   │  Dispatcher    proxy      │ │
    │   │  [ThreadPool]                 │   │  [ThreadPool]             │ │
    │   │  thread "nextweb-site"        │   │  thread "nextweb-api"     │ │
    │   └───────────────────────────────┘   └───────────────────────────┘ │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
STARTUP (FAIL-FAST)
=============================================================================

    1. Load the server list            ConfigError → abort
    2. Load every per-server config    ConfigError → abort
    3. Bind EVERY listening socket     OSError     → close all, abort
    4. Only then start the accept threads

No server ever accepts a connection while another one is misconfigured.

=============================================================================
SHUTDOWN
=============================================================================

SIGINT / SIGTERM (main thread only) stop every accept loop. In-flight
connections are not drained; worker threads are daemons.

=============================================================================
"""

import logging
import signal
import sys
import threading
from typing import Optional

from . import __version__
from .access_log import AccessLog, UNKNOWN_PATH
from .config import (
    AppSettings,
    RuntimeServerConfig,
    ServerDescriptor,
    load_server_config,
    load_server_list,
)
from .core import Connection, SocketServer, ThreadPool
from .dispatcher import Dispatcher
from .http.response import HTTPStatus, error_response


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str = "INFO") -> None:
    """
    Configure diagnostic and access logging.

    Diagnostics go to stderr via the root logger. Access lines go to
    stdout as bare messages, since they already carry their own timestamp.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(level=log_level, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    logging.getLogger("nextweb").setLevel(log_level)

    access = logging.getLogger("nextweb.access")
    access.setLevel(logging.INFO)
    access.propagate = False
    if not access.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(message)s"))
        access.addHandler(handler)


class VirtualServer:
    """
    One configured listening endpoint and everything needed to serve it.

    Connections are handled on the server's own thread unless a worker
    count is given, in which case they are handed to a ThreadPool.
    """

    def __init__(
        self,
        name: str,
        config: RuntimeServerConfig,
        access_log: Optional[AccessLog] = None,
        workers: int = 0,
        queue_size: int = 100,
    ):
        self.name = name
        self.config = config
        self.access_log = access_log or AccessLog()

        self.socket_server = SocketServer(name, config)
        self.dispatcher = Dispatcher(config, self.access_log)

        self.pool: Optional[ThreadPool] = None
        if workers > 0:
            self.pool = ThreadPool(
                min_workers=workers,
                max_workers=workers * 2,
                queue_size=queue_size,
                name=name,
            )

        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> tuple[str, int]:
        return self.socket_server.address

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def bind(self) -> None:
        self.socket_server.bind()

    def start(self) -> None:
        """Start the accept loop on a dedicated thread. bind() first."""
        if self.pool is not None:
            self.pool.start()

        self._thread = threading.Thread(
            target=self.socket_server.serve_forever,
            args=(self._on_connection,),
            name=f"nextweb-{self.name}",
            daemon=True,
        )
        self._thread.start()

    def _on_connection(self, conn: Connection) -> None:
        if self.pool is None:
            self.dispatcher.handle(conn)
            return

        if not self.pool.submit(self.dispatcher.handle, args=(conn,)):
            logger.warning(f"Server '{self.name}' worker queue full, rejecting {conn.client_address}")
            with conn:
                conn.send_response(error_response(HTTPStatus.SERVICE_UNAVAILABLE))
            # 503 is outside the classified set
            self.access_log.record(conn.client_address, UNKNOWN_PATH, 0)

    def stop(self) -> None:
        self.socket_server.shutdown()
        if self.pool is not None:
            self.pool.shutdown()

    def close(self) -> None:
        """Release the listening socket of a server that never started."""
        self.socket_server.close()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)


class NextWeb:
    """
    The whole process: every virtual server from the top-level config.

    Usage:
        app = NextWeb(AppSettings(config_path="config.toml"))
        app.run()          # blocks until SIGINT/SIGTERM

    Or, for embedding and tests:
        app.load()
        app.start()
        ...
        app.shutdown()
    """

    def __init__(self, settings: Optional[AppSettings] = None):
        self.settings = settings or AppSettings()
        self.settings.validate()

        self.access_log = AccessLog()
        self.servers: list[VirtualServer] = []

        self._shutdown_event = threading.Event()
        self._original_handlers: dict = {}

    # =========================================================================
    # STARTUP
    # =========================================================================

    def load(self) -> list[VirtualServer]:
        """
        Load every configuration file and build the virtual servers.

        Raises:
            ConfigError: Any configuration file is missing or invalid.
        """
        descriptors = load_server_list(self.settings.config_path)

        servers = []
        for descriptor in descriptors:
            servers.append(self._build_server(descriptor))

        self.servers = servers
        return servers

    def _build_server(self, descriptor: ServerDescriptor) -> VirtualServer:
        config = load_server_config(descriptor.config_path)

        print(f"Loaded configuration: {descriptor.config_path}")
        print(f"Server type: {config.server_type}")
        logger.debug(f"Server '{descriptor.name}' config: {config}")

        return VirtualServer(
            name=descriptor.name,
            config=config,
            access_log=self.access_log,
            workers=self.settings.workers,
        )

    def start(self) -> None:
        """
        Bind every server, then start every accept loop.

        Raises:
            OSError: A server could not bind; already-bound servers are
                     closed and nothing is started.
        """
        if not self.servers:
            self.load()

        bound: list[VirtualServer] = []
        try:
            for server in self.servers:
                server.bind()
                bound.append(server)
        except OSError:
            for server in bound:
                server.close()
            raise

        for server in self.servers:
            host, port = server.address
            print(f"Server '{server.name}' listening on {host}:{port}")
            server.start()

    # =========================================================================
    # MAIN LOOP
    # =========================================================================

    def run(self) -> None:
        """Start everything and block until shutdown or all servers exit."""
        print(f"nextWeb {__version__}")

        self.load()
        self.start()

        in_main_thread = threading.current_thread() is threading.main_thread()
        if in_main_thread:
            self._setup_signals()

        try:
            while not self._shutdown_event.is_set():
                if not any(server.is_alive for server in self.servers):
                    logger.warning("All servers have stopped")
                    break
                self._shutdown_event.wait(0.5)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            if in_main_thread:
                self._restore_signals()
            self.shutdown()

    def shutdown(self) -> None:
        """Stop every server. Safe to call more than once."""
        self._shutdown_event.set()
        for server in self.servers:
            server.stop()
        for server in self.servers:
            server.join(timeout=2.0)

    def _setup_signals(self):
        def shutdown_handler(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}, shutting down...")
            self._shutdown_event.set()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def _restore_signals(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()
