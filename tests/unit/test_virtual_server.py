"""
Unit tests for VirtualServer connection hand-off.
"""

import logging
import socket
import threading

import pytest

from nextweb.server import VirtualServer

from conftest import ClientPair, make_runtime_config


class BlockingDispatcher:
    """Stands in for Dispatcher: holds every connection until released."""

    def __init__(self):
        self.started = threading.Semaphore(0)
        self.release = threading.Event()

    def handle(self, conn):
        self.started.release()
        self.release.wait(5.0)


@pytest.fixture
def saturated(static_config):
    """
    A pooled server whose two workers are busy and whose one-slot queue
    is full.
    """
    server = VirtualServer(
        "busy", make_runtime_config("static", static=static_config), workers=1, queue_size=1,
    )
    dispatcher = BlockingDispatcher()
    server.dispatcher = dispatcher
    server.pool.start()
    pairs = [ClientPair() for _ in range(3)]

    try:
        server._on_connection(pairs[0].connection)
        assert dispatcher.started.acquire(timeout=2.0)

        # Every worker busy with work waiting: the pool grows to its max of 2
        server._on_connection(pairs[1].connection)
        assert dispatcher.started.acquire(timeout=2.0)

        server._on_connection(pairs[2].connection)
        assert server.pool.stats["tasks"]["queued"] == 1

        yield server
    finally:
        dispatcher.release.set()
        server.pool.shutdown()
        for pair in pairs:
            pair.close()


class TestQueueFull:

    def test_rejects_with_503(self, saturated):
        pair = ClientPair()
        try:
            pair.client.shutdown(socket.SHUT_WR)
            saturated._on_connection(pair.connection)

            assert pair.read_all().startswith(b"HTTP/1.1 503 Service Unavailable\r\n")
        finally:
            pair.close()

    def test_rejection_is_logged_once(self, saturated, caplog):
        pair = ClientPair()
        try:
            pair.client.shutdown(socket.SHUT_WR)
            with caplog.at_level(logging.INFO, logger="nextweb.access"):
                saturated._on_connection(pair.connection)
        finally:
            pair.close()

        lines = [r.getMessage() for r in caplog.records if r.name == "nextweb.access"]
        assert len(lines) == 1
        assert lines[0].endswith("] 10.0.0.7:51544 - - - 0")

    def test_without_pool_handles_inline(self, static_config, sample_get_request):
        server = VirtualServer("inline", make_runtime_config("static", static=static_config))
        assert server.pool is None

        pair = ClientPair()
        try:
            pair.send(sample_get_request)
            server._on_connection(pair.connection)

            assert pair.read_all().startswith(b"HTTP/1.1 200 OK\r\n")
        finally:
            pair.close()
