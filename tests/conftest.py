"""
pytest configuration and fixtures.
"""

import socket
import threading
import time
from typing import Generator, Optional
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rconserver import RCONServer, ServerConfig
from rconserver.core import Connection
from rconserver.protocol import (
    Packet,
    encode_packet,
    read_packet,
    SERVERDATA_AUTH,
    SERVERDATA_EXECCOMMAND,
)


PASSWORD = "secret"


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def config(free_port: int) -> ServerConfig:
    """Default test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port=free_port,
        password=PASSWORD,
        poll_interval=0.05,
        log_level="WARNING",
    )


@pytest.fixture
def socket_pair() -> Generator[tuple, None, None]:
    """A connected (server_side, client_side) socket pair."""
    server_side, client_side = socket.socketpair()
    client_side.settimeout(5.0)
    yield server_side, client_side
    for s in (server_side, client_side):
        try:
            s.close()
        except OSError:
            pass


@pytest.fixture
def connection(socket_pair) -> Connection:
    """Server-side Connection over a socket pair."""
    server_side, _ = socket_pair
    return Connection(socket=server_side, address=("127.0.0.1", 51000))


class RCONTestClient:
    """Minimal blocking RCON client for driving the server in tests."""

    def __init__(self, sock: socket.socket):
        self.sock = sock
        self.sock.settimeout(5.0)
        self._reader = sock.makefile("rb")

    @classmethod
    def connect(cls, port: int, host: str = "127.0.0.1") -> "RCONTestClient":
        return cls(socket.create_connection((host, port), timeout=5.0))

    def send(self, packet: Packet):
        self.sock.sendall(encode_packet(packet))

    def send_raw(self, data: bytes):
        self.sock.sendall(data)

    def recv(self) -> Optional[Packet]:
        return read_packet(self._reader)

    def auth(self, password: str, packet_id: int = 1) -> Optional[Packet]:
        self.send(Packet(id=packet_id, type=SERVERDATA_AUTH, body=password))
        return self.recv()

    def command(self, body: str, packet_id: int = 2):
        self.send(Packet(id=packet_id, type=SERVERDATA_EXECCOMMAND, body=body))

    def is_closed_by_peer(self, timeout: float = 1.0) -> bool:
        """True if the server closes its end (read returns EOF) within `timeout`."""
        self.sock.settimeout(timeout)
        try:
            return self.sock.recv(1) == b""
        except ConnectionResetError:
            return True
        except socket.timeout:
            return False
        finally:
            self.sock.settimeout(5.0)

    def close(self):
        try:
            self._reader.close()
            self.sock.close()
        except OSError:
            pass


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll `predicate` until it is true or `timeout` expires."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class TestServer:
    """Test server helper that runs in a background thread."""

    __test__ = False

    def __init__(self, server: RCONServer):
        self.server = server
        self.error: Optional[BaseException] = None
        self.returned = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        return self.server.address[1]

    def _run(self):
        try:
            self.server.listen_and_serve()
        except BaseException as e:
            self.error = e
        finally:
            self.returned.set()

    def start(self):
        """Start server in background thread."""
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

        if not self.server.wait_until_serving(timeout=5.0):
            raise RuntimeError(f"Server failed to start: {self.error}")

    def client(self) -> RCONTestClient:
        return RCONTestClient.connect(self.port)

    def stop(self):
        """Stop the server."""
        self.server.shutdown()

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)


@pytest.fixture
def peer(socket_pair) -> RCONTestClient:
    """Client side of the socket pair, speaking RCON."""
    _, client_side = socket_pair
    return RCONTestClient(client_side)


@pytest.fixture
def test_server(config: ServerConfig) -> Generator[TestServer, None, None]:
    """Create and start a test server that records received commands."""
    server = RCONServer(config=config)
    server.commands = []

    @server.on_command
    def record(command, client):
        server.commands.append((command, client.packet_id, client.connection_id))

    test_srv = TestServer(server)
    test_srv.start()

    yield test_srv

    test_srv.stop()


@pytest.fixture
def connect(test_server: TestServer) -> Generator:
    """Factory for clients connected to the test server, closed at teardown."""
    clients = []

    def factory() -> RCONTestClient:
        client = test_server.client()
        clients.append(client)
        return client

    yield factory

    for client in clients:
        client.close()
