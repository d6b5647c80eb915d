"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

This module wraps one accepted client socket with a packet-level API:
read the next RCON frame, write a packet, close.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL!
=============================================================================

TCP only guarantees that bytes arrive IN ORDER and INTACT. One RCON frame
may arrive split across several recv() calls, and two frames may arrive
in one:

    Client sends:
        AUTH {id: 1, "secret"}     (24 bytes)
        EXECCOMMAND {id: 2, "status"}   (24 bytes)

    Server might receive:
        recv() → 7 bytes            (part of the first length field + id)
        recv() → 41 bytes           (rest of AUTH + all of EXECCOMMAND)

The socket is read through a buffered file object (socket.makefile) and
the codec pulls exact byte counts from it, so frame boundaries come from
the length prefix, never from recv() boundaries.

=============================================================================
CONNECTION LIFECYCLE
=============================================================================

    OPEN ──────► (read_packet / send_packet)* ──────► CLOSED

Closing is idempotent. Once closed, reads report end of stream and sends
report failure.

=============================================================================
"""

import socket
import threading
import time
import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from ..protocol.packet import Packet, PacketError, encode_packet, read_packet


logger = logging.getLogger(__name__)

# Limits for draining unread client data on close. A client that keeps
# writing cannot hold the connection open past either one.
DRAIN_TIMEOUT = 0.5
DRAIN_MAX_BYTES = 64 * 1024


@dataclass
class Connection:
    """
    Represents a client connection.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    Connection Responsibilities                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  1. FRAMED READING                                                   │
    │     └── read_packet() returns one whole RCON packet or None          │
    │                                                                      │
    │  2. SERIALISED WRITING                                               │
    │     └── send_packet() holds a lock so a command handler on another   │
    │         thread cannot interleave bytes with the session's writes     │
    │                                                                      │
    │  3. GRACEFUL CLOSE                                                   │
    │     └── shutdown(SHUT_WR), drain, close; safe to call twice          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Attributes:
        socket: The client socket.
        address: Client's (ip, port) tuple.
        id: Short unique identifier used in log lines.
        created_at: Timestamp when the connection was accepted.
        last_activity: Timestamp of the last read or write.
        packets_received: Number of well-formed packets read.
    """

    # Required parameters
    socket: socket.socket
    address: tuple

    # Generated/default parameters
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    packets_received: int = 0

    # Configuration (passed from ServerConfig)
    timeout: Optional[float] = None
    max_packet_size: Optional[int] = None

    # Internal state
    _reader: object = field(default=None, repr=False)
    _write_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _closed: bool = field(default=False, repr=False)

    def __post_init__(self):
        self.socket.settimeout(self.timeout)
        self._reader = self.socket.makefile("rb")

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def client_ip(self) -> str:
        """Get the client IP address."""
        return self.address[0]

    @property
    def client_port(self) -> int:
        """Get the client port."""
        return self.address[1]

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def age(self) -> float:
        """Get connection age in seconds."""
        return time.time() - self.created_at

    # =========================================================================
    # READING
    # =========================================================================

    def read_packet(self) -> Optional[Packet]:
        """
        Read the next packet from the client.

        Returns:
            The packet, or None once the peer has gone away (clean close,
            reset, idle timeout, or a frame cut short by disconnect).

        Raises:
            PacketError: If the frame was malformed. It has been consumed,
                         so the next call reads the following frame.
        """
        if self._closed:
            return None

        try:
            packet = read_packet(self._reader, max_size=self.max_packet_size)
        except socket.timeout:
            logger.debug(f"[{self.id}] Idle timeout")
            return None
        except (ConnectionResetError, BrokenPipeError, ConnectionAbortedError):
            logger.debug(f"[{self.id}] Connection reset by peer")
            return None
        except PacketError:
            self.last_activity = time.time()
            raise
        except (OSError, ValueError):
            # Socket or reader closed underneath us
            if self._closed:
                return None
            raise

        if packet is not None:
            self.packets_received += 1
            self.last_activity = time.time()
        return packet

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_packet(self, packet: Packet) -> bool:
        """
        Send one packet to the client.

        Best effort: failures are logged, never raised.

        Returns:
            True if the whole frame was written, False otherwise.
        """
        try:
            data = encode_packet(packet)
        except PacketError as e:
            logger.warning(f"[{self.id}] Refusing to send invalid packet: {e}")
            return False

        return self.send(data)

    def send(self, data: bytes) -> bool:
        """
        Write raw bytes to the client with sendall().

        Returns:
            True if send succeeded, False if the connection is gone.
        """
        with self._write_lock:
            if self._closed:
                return False
            try:
                self.socket.sendall(data)
                self.last_activity = time.time()
                return True
            except OSError as e:
                logger.warning(f"[{self.id}] Send failed: {e}")
                return False

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self, drain: bool = True):
        """
        Close the connection gracefully.

        1. shutdown(SHUT_WR): send FIN so the client sees end of stream
        2. Drain anything the client already sent, for at most
           DRAIN_TIMEOUT seconds in total and DRAIN_MAX_BYTES bytes
        3. Close the reader and the socket

        Args:
            drain: Skip step 2 when False, for callers that must not block
                   (the accept loop rejecting a connection).
        """
        with self._write_lock:
            if self._closed:
                return
            self._closed = True

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # Peer already gone

        if drain:
            self._drain()

        try:
            self._reader.close()
        except OSError:
            pass

        try:
            self.socket.close()
        except OSError:
            pass

        logger.debug(
            f"[{self.id}] Connection closed after {self.packets_received} packets "
            f"({self.age:.1f}s)"
        )

    def _drain(self):
        deadline = time.monotonic() + DRAIN_TIMEOUT
        drained = 0
        try:
            while drained < DRAIN_MAX_BYTES:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.debug(f"[{self.id}] Drain deadline reached")
                    break
                self.socket.settimeout(remaining)
                chunk = self.socket.recv(4096)
                if not chunk:
                    break
                drained += len(chunk)
        except OSError:
            pass

    # =========================================================================
    # CONTEXT MANAGER
    # =========================================================================

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - ensure connection is closed."""
        self.close()
        return False
