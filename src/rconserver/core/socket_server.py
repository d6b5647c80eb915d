"""
=============================================================================
LOW-LEVEL TCP SOCKET SERVER
=============================================================================

This module implements the listening side of the RCON server: create the
socket, bind, listen, and run the accept loop that turns each incoming
client into a Connection.

=============================================================================
ACCEPT LOOP
=============================================================================

    ┌───────────────────────┐
    │   Listening Socket    │ ◄── Created once in start()
    └───────────┬───────────┘
                │ accept()
                ▼
        ┌───────────────┐   banned    ┌──────────────────────────────┐
        │  ban check    │ ──────────► │ close raw socket, no I/O     │
        └───────┬───────┘             └──────────────────────────────┘
                │ allowed
                ▼
        ┌───────────────┐
        │  Connection   │ ──► connection_handler(conn)
        └───────────────┘      (RCONServer spawns a session thread)

The loop is single-threaded and sequential. Handing a connection off
must not block, or the next accept() waits behind it.

=============================================================================
SHUTDOWN
=============================================================================

accept() runs with a short timeout (config.poll_interval). Between calls
the loop checks the running flag, so shutdown() from any thread stops it
within one interval. An accept() error after shutdown means the listener
is gone and is the normal way out, not a failure.

This module never installs OS signal handlers. Wiring SIGINT/SIGTERM to
shutdown() is up to the embedding application (see rconserver.signals).

=============================================================================
"""

import socket
import logging
import threading
from typing import Optional, Callable, Tuple

from ..config import ServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)


_IPV4_MAPPED_PREFIX = "::ffff:"


def address_without_port(addr: str) -> str:
    """
    Strip a trailing ":port" from a textual address.

        "10.0.0.5:51000"       → "10.0.0.5"
        "10.0.0.5"             → "10.0.0.5"
        "[::1]:27015"          → "::1"
        "::1"                  → "::1"
        "::ffff:10.0.0.5"      → "10.0.0.5"

    IPv4-mapped IPv6 addresses, as reported for IPv4 clients of a
    dual-stack listener, are reduced to their IPv4 form.
    """
    host = addr.strip()
    if host.startswith("["):
        end = host.find("]")
        if end != -1:
            host = host[1:end]
    elif host.count(":") == 1:
        host = host.split(":", 1)[0]

    if host.lower().startswith(_IPV4_MAPPED_PREFIX) and "." in host:
        host = host[len(_IPV4_MAPPED_PREFIX):]
    return host


class SocketServer:
    """
    Low-level TCP socket server.

    Manages the listening socket and the accept loop. Ban-list gating
    happens here, before a Connection is built, so a banned client never
    has a single byte read from or written to its socket.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      SocketServer Internals                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    start(handler, is_banned)                                         │
    │        ├──► _create_socket()   socket() + SO_REUSEADDR               │
    │        ├──► bind()             OSError propagates to the caller      │
    │        ├──► listen()                                                 │
    │        └──► _accept_loop()     Blocks here until shutdown()          │
    │                                                                      │
    │    shutdown()        _running = False (idempotent, any thread)       │
    │                                                                      │
    │    _cleanup()        Close listening socket, set stopped event       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Usage:
        server = SocketServer(config)
        server.start(handle_connection, is_banned=lambda host: False)
    """

    def __init__(self, config: ServerConfig):
        """
        Initialize the socket server.

        Args:
            config: Server configuration containing host, port, backlog, etc.

        The socket is created lazily in start().
        """
        self.config = config

        self._socket: Optional[socket.socket] = None
        self._bound_address: Optional[Tuple[str, int]] = None

        self._running = False
        self._shutdown_requested = False
        self._lock = threading.Lock()

        # Set once the socket is listening / once the loop has exited
        self._serving_event = threading.Event()
        self._stopped_event = threading.Event()

    @property
    def is_running(self) -> bool:
        """Check if server is running."""
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """Get the configured address (IP, port)."""
        return (self.config.host, self.config.port)

    @property
    def bound_address(self) -> Optional[Tuple[str, int]]:
        """The address actually bound, or None before start(). Resolves port 0."""
        return self._bound_address

    def _create_socket(self) -> socket.socket:
        """
        Create and configure the server socket.

        Returns:
            Configured socket ready for binding.
        """
        family = socket.AF_INET6 if ":" in self.config.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)

        # Allow an immediate restart while old sockets sit in TIME_WAIT
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # accept() wakes up every poll_interval to check the running flag
        sock.settimeout(self.config.poll_interval)

        return sock

    def start(
        self,
        connection_handler: Callable[[Connection], None],
        is_banned: Optional[Callable[[str], bool]] = None,
    ):
        """
        Bind, listen and accept connections.

        This method BLOCKS until shutdown() is called.

        Args:
            connection_handler: Receives each allowed connection. Must
                                return quickly; the accept loop waits on it.
            is_banned: Called with the client host (no port). True closes
                       the socket before any I/O.

        Raises:
            OSError: If the socket cannot be bound or put in listen mode.
        """
        self._stopped_event.clear()
        self._socket = self._create_socket()

        try:
            self._socket.bind((self.config.host, self.config.port))
            self._socket.listen(self.config.backlog)
        except OSError as e:
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
            self._cleanup()
            raise

        self._bound_address = self._socket.getsockname()[:2]

        with self._lock:
            # A shutdown() that raced ahead of start() still wins
            self._running = not self._shutdown_requested
        self._serving_event.set()

        host, port = self._bound_address
        logger.info(f"RCON server listening on {host}:{port}")

        try:
            self._accept_loop(connection_handler, is_banned)
        finally:
            self._cleanup()

    def _accept_loop(
        self,
        connection_handler: Callable[[Connection], None],
        is_banned: Optional[Callable[[str], bool]],
    ):
        """
        Main loop for accepting connections.

        ┌─────────────────────────────────────────────────────────────────┐
        │                     Accept Loop Flow                             │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │   while self._running:                                           │
        │       ├──► accept()            (or timeout → loop again)         │
        │       ├──► banned? close raw socket, continue                    │
        │       ├──► wrap in Connection                                    │
        │       └──► connection_handler(conn)                              │
        │                                                                  │
        └─────────────────────────────────────────────────────────────────┘
        """
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                # Listener closed underneath us is the normal way out
                if self._running:
                    logger.error(f"Accept error: {e}")
                break

            self._dispatch(client_socket, client_address, connection_handler, is_banned)

    def _dispatch(
        self,
        client_socket: socket.socket,
        client_address: tuple,
        connection_handler: Callable[[Connection], None],
        is_banned: Optional[Callable[[str], bool]],
    ):
        """Gate one accepted socket and hand it to the connection handler."""
        host = address_without_port(client_address[0])

        if is_banned is not None and is_banned(host):
            logger.info(f"Rejected connection from banned address {host}")
            try:
                client_socket.close()
            except OSError:
                pass
            return

        logger.debug(f"Accepted connection from {host}:{client_address[1]}")

        conn = Connection(
            socket=client_socket,
            address=client_address,
            timeout=self.config.idle_timeout,
            max_packet_size=self.config.max_packet_size,
        )

        try:
            connection_handler(conn)
        except Exception as e:
            logger.exception(f"[{conn.id}] Failed to hand off connection: {e}")
            conn.close(drain=False)

    def shutdown(self):
        """
        Stop the accept loop.

        Safe to call from any thread, any number of times. Connections
        already handed off are not touched.
        """
        with self._lock:
            already_requested = self._shutdown_requested
            self._shutdown_requested = True
            self._running = False
        if not already_requested:
            logger.info("Shutting down RCON listener...")

    def _cleanup(self):
        """Close the listening socket and release waiters."""
        with self._lock:
            self._running = False
            self._shutdown_requested = False

        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass  # Already closed
            self._socket = None

        self._serving_event.clear()
        self._stopped_event.set()
        logger.info("RCON listener stopped")

    def wait_until_serving(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the socket is listening.

        Returns:
            True if the server is serving, False on timeout.
        """
        return self._serving_event.wait(timeout)

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the accept loop has exited and the socket is closed.

        Returns:
            True if shutdown completed, False on timeout.
        """
        return self._stopped_event.wait(timeout)
