"""
pytest configuration and fixtures.
"""

import socket
import time
from typing import Callable, Generator, Optional, Tuple
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from tcpacceptor import AcceptorServer, AcceptorConfig
from tcpacceptor.core.connection import Connection


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET / HTTP/1.1\r\n"
        b"Host: localhost:4221\r\n"
        b"User-Agent: pytest\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with a body."""
    body = b'{"name": "John"}'
    return (
        b"POST /echo HTTP/1.1\r\n"
        b"Host: localhost:4221\r\n"
        + f"Content-Length: {len(body)}\r\n".encode()
        + b"\r\n"
    ) + body


@pytest.fixture
def config() -> AcceptorConfig:
    """Small, fast test configuration."""
    return make_config()


def make_config(**overrides) -> AcceptorConfig:
    """Test configuration on a free port with short timeouts."""
    values = dict(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        min_workers=2,
        max_workers=4,
        queue_size=8,
        read_timeout=2.0,
        write_timeout=2.0,
        handler_timeout=5.0,
        linger_timeout=0.2,
        drain_timeout=5.0,
        poll_interval=0.05,
        log_level="WARNING",
    )
    values.update(overrides)
    return AcceptorConfig(**values)


@pytest.fixture
def socket_pair() -> Generator[Tuple[socket.socket, socket.socket], None, None]:
    """Connected (server side, client side) sockets."""
    server_side, client_side = socket.socketpair()
    yield server_side, client_side
    for sock in (server_side, client_side):
        try:
            sock.close()
        except OSError:
            pass


@pytest.fixture
def make_connection(socket_pair) -> Callable[..., Connection]:
    """Build a Connection around the server side of a socket pair."""
    server_side, _ = socket_pair

    def factory(**kwargs) -> Connection:
        kwargs.setdefault("read_timeout", 1.0)
        kwargs.setdefault("write_timeout", 1.0)
        kwargs.setdefault("linger_timeout", 0.1)
        return Connection(socket=server_side, address=("127.0.0.1", 50000), **kwargs)

    return factory


class TestServer:
    """Test server helper that runs in a background thread."""

    __test__ = False  # Not a test class, despite the name

    def __init__(self, server: AcceptorServer):
        self.server = server

    @property
    def address(self) -> Tuple[str, int]:
        return self._address

    def start(self):
        """Start server in background thread and wait until it listens."""
        self.server.start_background(timeout=5.0)
        self._address = self.server.address

    def stop(self):
        """Stop the server and wait for it to drain."""
        self.server.shutdown()
        self.server.wait_for_stop(timeout=15.0)

    def connect(self, timeout: float = 5.0) -> socket.socket:
        return socket.create_connection(self._address, timeout=timeout)

    def request(self, data: bytes, timeout: float = 5.0, half_close: bool = False) -> bytes:
        """Send ``data`` and read until the server closes the connection."""
        with self.connect(timeout) as sock:
            sock.sendall(data)
            if half_close:
                sock.shutdown(socket.SHUT_WR)
            return recv_all(sock)

    def wait_for(self, predicate: Callable[[dict], bool], timeout: float = 5.0) -> bool:
        """Poll server stats until ``predicate(stats)`` holds."""
        give_up_at = time.monotonic() + timeout
        while time.monotonic() < give_up_at:
            if predicate(self.server.stats):
                return True
            time.sleep(0.02)
        return False


def recv_all(sock: socket.socket) -> bytes:
    """Read until EOF. Connection resets count as EOF."""
    chunks = []
    while True:
        try:
            chunk = sock.recv(4096)
        except ConnectionResetError:
            break
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks)


def parse_response(raw: bytes) -> Tuple[int, dict, bytes]:
    """Split a raw response into (status code, headers, body)."""
    head, _, body = raw.partition(b"\r\n\r\n")
    lines = head.decode("latin-1").split("\r\n")
    status = int(lines[0].split(" ")[1])
    headers = {}
    for line in lines[1:]:
        name, _, value = line.partition(":")
        headers[name.strip().lower()] = value.strip()
    return status, headers, body


def connected_count(stats: dict) -> int:
    """Connections the server has finished with, whatever the outcome."""
    connections = stats["connections"]
    return sum(count for name, count in connections.items() if name != "accepted")


@pytest.fixture
def server_factory() -> Generator[Callable[..., TestServer], None, None]:
    """Start servers on demand; all of them are stopped after the test."""
    started = []

    def factory(handler: Optional[Callable] = None, **overrides) -> TestServer:
        test_srv = TestServer(AcceptorServer(make_config(**overrides), handler=handler))
        test_srv.start()
        started.append(test_srv)
        return test_srv

    yield factory

    for test_srv in started:
        test_srv.stop()


@pytest.fixture
def test_server(server_factory) -> TestServer:
    """A running server with the default canned handler."""
    return server_factory()
