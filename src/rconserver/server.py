"""
=============================================================================
RCON SERVER
=============================================================================

The embedding API. A host application creates an RCONServer, gives it a
password, an optional ban list and a command handler, then blocks in
listen_and_serve() until shutdown() is called.

=============================================================================
REQUEST FLOW
=============================================================================

    accept ──► ban check ──► admission ──► Thread(Session.run)
                                                  │
                                   read_packet ◄──┤
                                                  ├──► AUTH → AUTH_RESPONSE
                                                  └──► EXECCOMMAND
                                                          └──► handler(command, client)

Each connection gets its own daemon thread. A slow handler holds up only
the connection it was called from.

=============================================================================
"""

import logging
import threading
from dataclasses import replace
from typing import Callable, Iterable, Optional, Tuple

from .config import ServerConfig
from .core import SocketServer, Connection, Client, Session, address_without_port


logger = logging.getLogger(__name__)


CommandHandler = Callable[[str, Client], None]


class RCONServer:
    """
    Source RCON protocol server.

    =========================================================================
    USAGE
    =========================================================================

        server = RCONServer("0.0.0.0", 27015, "secret")
        server.set_ban_list(["10.0.0.5"])

        @server.on_command
        def handle(command, client):
            print(f"{client.address[0]} ran {command!r}")
            client.reply("ok")

        close_on_signals(server)   # optional, from rconserver.signals
        server.listen_and_serve()  # blocks until server.shutdown()

    =========================================================================
    ARCHITECTURE
    =========================================================================

    - ServerConfig: Configuration management
    - SocketServer: Listening socket, accept loop, ban gating
    - Connection: Framed packet I/O on one client socket
    - Session: Per-connection authentication state machine

    =========================================================================
    """

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        password: Optional[str] = None,
        config: Optional[ServerConfig] = None,
    ):
        """
        Initialize the RCON server.

        Args:
            host: Bind host. Overrides config.host.
            port: Bind port. Overrides config.port.
            password: Shared secret. Overrides config.password.
            config: Full configuration. Defaults are used if not provided.
        """
        overrides = {
            name: value
            for name, value in (("host", host), ("port", port), ("password", password))
            if value is not None
        }
        # Private copy; the caller's ServerConfig is never modified
        self.config = replace(config or ServerConfig(), **overrides)
        self.config.validate()

        self._socket_server = SocketServer(self.config)

        # Swapped wholesale, never mutated in place
        self._ban_list: Tuple[str, ...] = ()
        self.set_ban_list(self.config.ban_list)

        self._command_handler: Optional[CommandHandler] = None

        self._sessions: dict[str, Session] = {}
        self._sessions_lock = threading.Lock()

    # =========================================================================
    # CONFIGURATION METHODS
    # =========================================================================

    def set_ban_list(self, addresses: Iterable[str]):
        """
        Replace the ban list.

        Entries are hosts; a trailing ":port" is stripped. Best called
        before listen_and_serve(), but the swap is atomic so calling it
        while serving is safe.
        """
        self._ban_list = tuple(address_without_port(a) for a in addresses)
        self.config.ban_list = list(self._ban_list)

    @property
    def ban_list(self) -> Tuple[str, ...]:
        return self._ban_list

    def is_banned(self, host: str) -> bool:
        """Exact string match of a client host against the ban list."""
        return host in self._ban_list

    def on_command(self, handler: Optional[CommandHandler]) -> Optional[CommandHandler]:
        """
        Register the command handler.

        Called as handler(command, client) for every EXECCOMMAND packet on
        an authenticated connection, from that connection's thread. The
        last registration wins; None turns commands into no-ops.

        Returns the handler, so this also works as a decorator.
        """
        self._command_handler = handler
        return handler

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def address(self) -> Tuple[str, int]:
        """Bound address while serving, configured address otherwise."""
        return self._socket_server.bound_address or self._socket_server.address

    @property
    def is_running(self) -> bool:
        return self._socket_server.is_running

    @property
    def active_connections(self) -> int:
        """Number of sessions still running."""
        with self._sessions_lock:
            return len(self._sessions)

    # =========================================================================
    # SERVER LIFECYCLE
    # =========================================================================

    def listen_and_serve(self):
        """
        Serve RCON clients (blocking).

        Returns None once shutdown() stops the listener.

        Raises:
            OSError: If the address cannot be bound.
        """
        if not self.config.password:
            logger.warning("No RCON password set, every authentication will be refused")

        self._socket_server.start(self._handle_connection, is_banned=self.is_banned)

    def shutdown(self):
        """
        Stop accepting connections.

        listen_and_serve() returns shortly after. Sessions already running
        are left alone and end when their clients disconnect.
        """
        self._socket_server.shutdown()

    close = shutdown

    def wait_until_serving(self, timeout: Optional[float] = None) -> bool:
        """Block until the listener is accepting connections."""
        return self._socket_server.wait_until_serving(timeout)

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        """Block until listen_and_serve() has released the socket."""
        return self._socket_server.wait_for_shutdown(timeout)

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """
        Start a session thread for an accepted connection.

        Called by SocketServer from the accept loop.
        """
        session = Session(
            conn,
            password=self.config.password,
            dispatch=self._dispatch_command,
            max_malformed_packets=self.config.max_malformed_packets,
        )

        with self._sessions_lock:
            limit = self.config.max_connections
            if limit is not None and len(self._sessions) >= limit:
                admitted = False
            else:
                admitted = True
                self._sessions[conn.id] = session

        if not admitted:
            logger.warning(f"[{conn.id}] Connection limit reached, rejecting {conn.client_ip}")
            conn.close(drain=False)
            return

        thread = threading.Thread(
            target=self._run_session,
            args=(session,),
            name=f"RCONSession-{conn.id}",
            daemon=True,
        )
        try:
            thread.start()
        except RuntimeError:
            self._forget(session)
            raise

    def _run_session(self, session: Session):
        """Thread entry point: run one session and deregister it."""
        try:
            session.run()
        finally:
            self._forget(session)

    def _forget(self, session: Session):
        with self._sessions_lock:
            self._sessions.pop(session.connection.id, None)

    def _dispatch_command(self, command: str, client: Client):
        """Forward a command to whichever handler is registered right now."""
        handler = self._command_handler
        if handler is None:
            return
        logger.debug(f"[{client.connection_id}] Command: {command!r}")
        handler(command, client)
