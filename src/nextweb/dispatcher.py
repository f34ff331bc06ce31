"""
=============================================================================
REQUEST DISPATCHER
=============================================================================

Turns one accepted connection into one response and one access-log line.

=============================================================================
PER-CONNECTION LIFECYCLE
=============================================================================

    Accepted ──► Read ──► Dispatched ──► Logged ──► Written ──► Closed
                  │
                  └── read failed ──► Logged(400) ──► Closed

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         handle(conn)                                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   client = conn.client_address          "ip:port" or "unknown"      │
    │   raw    = conn.read_request()          bounded read                │
    │   path   = extract_path(raw)                                        │
    │                                                                      │
    │   server_type                                                        │
    │     "static" → StaticHandler.serve(path)   (500 if no [static])     │
    │     "proxy"  → ProxyHandler.forward(raw)   (500 if no [proxy])      │
    │     other    → 501 Not Implemented                                  │
    │                                                                      │
    │   status = classify_status(response)                                │
    │   access_log.record(client, path, status)                           │
    │   conn.send_response(response)          best effort                 │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The dispatcher holds only the server's frozen RuntimeServerConfig and the
handlers built from it, so one instance can serve connections from many
worker threads at once.

=============================================================================
"""

import logging
from typing import Optional

from .access_log import AccessLog, AccessLogRecord, UNKNOWN_PATH
from .config import RuntimeServerConfig
from .core.connection import Connection, ConnectionState, RequestTooLarge
from .handlers import ProxyHandler, StaticHandler
from .http.request import extract_path
from .http.response import HTTPStatus, classify_status, error_response


logger = logging.getLogger(__name__)

STATIC_TYPE = "static"
PROXY_TYPE = "proxy"

MISSING_STATIC_MESSAGE = "500 Internal Server Error: Static configuration is missing"
MISSING_PROXY_MESSAGE = "500 Internal Server Error: Proxy configuration is missing"


class Dispatcher:
    """
    Routes connections of one virtual server to its responder.

    Usage:
        dispatcher = Dispatcher(runtime_config)
        dispatcher.handle(conn)   # reads, responds, logs, closes
    """

    def __init__(self, config: RuntimeServerConfig, access_log: Optional[AccessLog] = None):
        self.config = config
        self.access_log = access_log or AccessLog()

        self._static: Optional[StaticHandler] = None
        if config.static_config is not None:
            self._static = StaticHandler(config.static_config)

        self._proxy: Optional[ProxyHandler] = None
        if config.proxy_config is not None:
            self._proxy = ProxyHandler(config.proxy_config)

    def handle(self, conn: Connection) -> AccessLogRecord:
        """
        Serve one connection from read to close.

        Returns:
            The access-log record emitted for the connection.
        """
        client = conn.client_address

        with conn:
            try:
                raw = conn.read_request()
            except RequestTooLarge as e:
                logger.warning(f"[{conn.id}] {client}: {e}")
                conn.send_response(error_response(HTTPStatus.BAD_REQUEST))
                return self.access_log.record(client, UNKNOWN_PATH, HTTPStatus.BAD_REQUEST)
            except OSError as e:
                logger.debug(f"[{conn.id}] Read from {client} failed: {e}")
                return self.access_log.record(client, UNKNOWN_PATH, HTTPStatus.BAD_REQUEST)

            if not raw:
                logger.debug(f"[{conn.id}] {client} closed without sending a request")
                return self.access_log.record(client, UNKNOWN_PATH, HTTPStatus.BAD_REQUEST)

            conn.state = ConnectionState.PROCESSING
            path = extract_path(raw)
            response = self.dispatch(raw, path)

            entry = self.access_log.record(client, path, classify_status(response))
            conn.send_response(response)
            return entry

    def dispatch(self, raw: bytes, path: str) -> bytes:
        """
        Produce the response for a request on this server.

        Never raises: a failing responder is logged and answered with 500.
        """
        server_type = self.config.server_type

        try:
            if server_type == STATIC_TYPE:
                if self._static is None:
                    return error_response(HTTPStatus.INTERNAL_SERVER_ERROR, MISSING_STATIC_MESSAGE)
                return self._static.serve(path)

            if server_type == PROXY_TYPE:
                if self._proxy is None:
                    return error_response(HTTPStatus.INTERNAL_SERVER_ERROR, MISSING_PROXY_MESSAGE)
                return self._proxy.forward(raw)

        except Exception as e:
            logger.exception(f"{server_type} handler failed for {path!r}: {e}")
            return error_response(HTTPStatus.INTERNAL_SERVER_ERROR)

        return error_response(HTTPStatus.NOT_IMPLEMENTED)
