"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the RCON server.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m rconserver --port 27016                         │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── RCON_PASSWORD=secret python -m rconserver                 │
    │                                                                      │
    │   3. Defaults in this dataclass                                     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The embedding application may also build a ServerConfig in code and pass
it straight to RCONServer.

=============================================================================
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from .protocol.packet import DEFAULT_PORT, MIN_PACKET_SIZE


@dataclass
class ServerConfig:
    """
    Configuration for the RCON server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, poll_interval

    AUTHENTICATION
    - password, ban_list

    CONNECTION LIMITS
    - idle_timeout, max_packet_size, max_malformed_packets, max_connections

    LOGGING
    - log_level

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """
    The IP address to bind to.
    - "127.0.0.1" - Localhost only
    - "0.0.0.0" - All network interfaces
    """

    port: int = DEFAULT_PORT
    """
    The port number to listen on. 27015 is the Source engine default.
    0 asks the OS for a free port (see SocketServer.bound_address).
    """

    backlog: int = 128
    """Maximum number of queued, not yet accepted connections."""

    poll_interval: float = 1.0
    """
    Timeout for each accept() call in seconds.
    Upper bound on how long shutdown() takes to stop the accept loop.
    """

    # ─────────────────────────────────────────────────────────────────────
    # AUTHENTICATION
    # ─────────────────────────────────────────────────────────────────────

    password: str = field(default="", repr=False)
    """
    Shared secret clients must send in their AUTH packet.
    An empty password refuses every authentication attempt.
    """

    ban_list: list[str] = field(default_factory=list)
    """Client hosts (no port) whose connections are closed on accept."""

    # ─────────────────────────────────────────────────────────────────────
    # CONNECTION LIMITS
    # ─────────────────────────────────────────────────────────────────────

    idle_timeout: Optional[float] = None
    """
    Seconds a connection may stay silent before it is closed.
    None = wait forever (RCON sessions are often idle for long periods).
    """

    max_packet_size: Optional[int] = None
    """
    Largest length field accepted from a client.
    Larger frames are drained and discarded as malformed.
    None = no limit.
    """

    max_malformed_packets: Optional[int] = None
    """
    Malformed frames tolerated per connection before it is closed.
    None = unlimited (a corrupt frame never ends a session).
    """

    max_connections: Optional[int] = None
    """
    Maximum number of concurrent sessions.
    Connections beyond this are closed immediately. None = unbounded.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        RCON_HOST             Server host (default: 127.0.0.1)
        RCON_PORT             Server port (default: 27015)
        RCON_PASSWORD         Shared secret (default: empty, refuses auth)
        RCON_BAN_LIST         Comma separated hosts to reject
        RCON_MAX_CONNECTIONS  Concurrent session limit (default: none)
        RCON_IDLE_TIMEOUT     Idle timeout in seconds (default: none)
        RCON_LOG_LEVEL        Logging level (default: INFO)

        =====================================================================
        """
        max_connections = os.getenv("RCON_MAX_CONNECTIONS")
        idle_timeout = os.getenv("RCON_IDLE_TIMEOUT")

        return cls(
            host=os.getenv("RCON_HOST", "127.0.0.1"),
            port=int(os.getenv("RCON_PORT", str(DEFAULT_PORT))),
            password=os.getenv("RCON_PASSWORD", ""),
            ban_list=parse_ban_list(os.getenv("RCON_BAN_LIST", "")),
            max_connections=int(max_connections) if max_connections else None,
            idle_timeout=float(idle_timeout) if idle_timeout else None,
            log_level=os.getenv("RCON_LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: On the first invalid setting.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")

        if self.idle_timeout is not None and self.idle_timeout <= 0:
            raise ValueError("idle_timeout must be > 0")

        if self.max_packet_size is not None and self.max_packet_size < MIN_PACKET_SIZE:
            raise ValueError(f"max_packet_size must be >= {MIN_PACKET_SIZE}")

        if self.max_malformed_packets is not None and self.max_malformed_packets < 1:
            raise ValueError("max_malformed_packets must be >= 1")

        if self.max_connections is not None and self.max_connections < 1:
            raise ValueError("max_connections must be >= 1")

        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"Unknown log level: {self.log_level}")


def parse_ban_list(value: str) -> list[str]:
    """Split a comma separated host list, dropping blanks."""
    return [host.strip() for host in value.split(",") if host.strip()]


def setup_logging(level: str = "INFO") -> None:
    """
    Configure root logging for command-line use.

    Only the CLI calls this. Embedding applications configure logging
    themselves.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    logging.getLogger("rconserver").setLevel(numeric_level)
