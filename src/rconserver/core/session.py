"""
=============================================================================
RCON SESSION STATE MACHINE
=============================================================================

One Session drives one accepted connection from its first byte to close.

=============================================================================
STATES
=============================================================================

    UNAUTHENTICATED ──── AUTH, correct password ────► AUTHENTICATED
          │                                                │
          │ AUTH, wrong password                           │ EXECCOMMAND
          │ AUTH, no password configured                   │   └─► handler(body, client)
          │ any other packet type                          │
          │ end of stream                                  │ end of stream, wrong
          ▼                                                │ re-auth, other types
        CLOSED ◄───────────────────────────────────────────┘

A malformed frame never changes state: it is discarded and the session
reads the next one (unless a malformed-packet limit is configured).

=============================================================================
TRANSITIONS
=============================================================================

    state            packet                          action
    ───────────────  ──────────────────────────────  ─────────────────────────
    AUTHENTICATED    EXECCOMMAND                     call handler
    UNAUTHENTICATED  not AUTH                        close
    any              AUTH, password unset            close, no response
    any              AUTH, password matches          AUTH_RESPONSE{id}
    any              AUTH, password differs          AUTH_RESPONSE{-1}, close
    AUTHENTICATED    anything else                   close

=============================================================================
"""

import hmac
import logging
from enum import Enum
from typing import Callable, Optional

from ..protocol.packet import (
    Packet,
    PacketError,
    SERVERDATA_AUTH,
    SERVERDATA_AUTH_RESPONSE,
    SERVERDATA_EXECCOMMAND,
    AUTH_FAILED_ID,
)
from .client import Client
from .connection import Connection


logger = logging.getLogger(__name__)


CommandDispatcher = Callable[[str, Client], None]


class SessionState(Enum):
    """Authentication state of one connection."""
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class Session:
    """
    Authentication state machine for a single connection.

    The session owns its connection: run() always closes it on the way
    out. Packets are handled strictly in arrival order, and the command
    dispatcher is called synchronously on the session's own thread.

    Usage:
        session = Session(conn, password="secret", dispatch=handler)
        session.run()  # Blocks until the client leaves or is dropped
    """

    def __init__(
        self,
        connection: Connection,
        password: str,
        dispatch: Optional[CommandDispatcher] = None,
        max_malformed_packets: Optional[int] = None,
    ):
        """
        Args:
            connection: The accepted connection to drive.
            password: Shared secret. Empty means every AUTH is refused.
            dispatch: Called with (command, client) for each authenticated
                      EXECCOMMAND. None makes commands no-ops.
            max_malformed_packets: Close after this many malformed frames.
                                   None tolerates any number.
        """
        self.connection = connection
        self.dispatch = dispatch
        self.max_malformed_packets = max_malformed_packets

        self.state = SessionState.UNAUTHENTICATED
        self.malformed_packets = 0
        self.commands_dispatched = 0

        self._password = password.encode("utf-8")

    @property
    def authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    # =========================================================================
    # MAIN LOOP
    # =========================================================================

    def run(self):
        """
        Read and handle packets until the session closes.

        Never raises: anything that goes wrong is local to this connection.
        """
        conn = self.connection
        logger.debug(f"[{conn.id}] Session started for {conn.client_ip}:{conn.client_port}")

        with conn:
            while not self.closed:
                try:
                    packet = conn.read_packet()
                except PacketError as e:
                    self._on_malformed(e)
                    continue
                except Exception as e:
                    logger.exception(f"[{conn.id}] Connection error: {e}")
                    self.close()
                    break

                if packet is None:
                    logger.debug(f"[{conn.id}] Client disconnected")
                    self.close()
                    break

                self.handle_packet(packet)

        self.state = SessionState.CLOSED

    def _on_malformed(self, error: PacketError):
        self.malformed_packets += 1
        logger.debug(f"[{self.connection.id}] Discarding malformed packet: {error}")

        if not error.recoverable:
            logger.info(f"[{self.connection.id}] Closing, stream cannot be realigned: {error}")
            self.close()
            return

        limit = self.max_malformed_packets
        if limit is not None and self.malformed_packets >= limit:
            logger.info(
                f"[{self.connection.id}] Closing after {self.malformed_packets} malformed packets"
            )
            self.close()

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def handle_packet(self, packet: Packet):
        """Apply one packet to the state machine."""
        if self.closed:
            return

        conn = self.connection

        if self.authenticated and packet.type == SERVERDATA_EXECCOMMAND:
            self._dispatch_command(packet)
            return

        if packet.type != SERVERDATA_AUTH:
            logger.info(
                f"[{conn.id}] Unexpected packet type {packet.type} while "
                f"{self.state.value}, closing"
            )
            self.close()
            return

        if not self._password:
            logger.warning(f"[{conn.id}] Auth attempt refused: no password configured")
            self.close()
            return

        self._authenticate(packet)

    def _authenticate(self, packet: Packet):
        conn = self.connection
        correct = hmac.compare_digest(packet.body.encode("utf-8"), self._password)

        response = Packet(
            id=packet.id if correct else AUTH_FAILED_ID,
            type=SERVERDATA_AUTH_RESPONSE,
        )
        # Best effort: the transition below happens either way
        conn.send_packet(response)

        if correct:
            if not self.authenticated:
                logger.info(f"[{conn.id}] {conn.client_ip} authenticated")
            self.state = SessionState.AUTHENTICATED
        else:
            logger.warning(f"[{conn.id}] Failed auth attempt from {conn.client_ip}")
            self.close()

    def _dispatch_command(self, packet: Packet):
        if self.dispatch is None:
            return

        conn = self.connection
        self.commands_dispatched += 1
        try:
            self.dispatch(packet.body, Client(connection=conn, packet_id=packet.id))
        except Exception as e:
            logger.exception(f"[{conn.id}] Command handler error: {e}")

    def close(self):
        """Close the connection and enter the terminal state."""
        self.state = SessionState.CLOSED
        self.connection.close()
