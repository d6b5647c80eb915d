"""
=============================================================================
RCONSERVER - SOURCE RCON PROTOCOL SERVER
=============================================================================

An embeddable server for the Source RCON protocol: clients authenticate
with a shared password, then send text commands that the host
application executes.

=============================================================================
PROJECT STRUCTURE
=============================================================================

    rconserver/
    ├── __init__.py          # Package exports (this file)
    ├── __main__.py          # CLI entry point (python -m rconserver)
    ├── config.py            # ServerConfig and logging setup
    ├── server.py            # RCONServer - the embedding API
    ├── signals.py           # Optional SIGINT/SIGTERM → shutdown wiring
    │
    ├── protocol/            # Wire format
    │   └── packet.py        # Packet, encode/decode, SERVERDATA_* types
    │
    └── core/                # Networking and sessions
        ├── socket_server.py # Listening socket, accept loop, ban gating
        ├── connection.py    # Framed I/O on one client socket
        ├── session.py       # Auth state machine
        └── client.py        # Handle passed to command handlers

=============================================================================
QUICK START
=============================================================================

    from rconserver import RCONServer

    server = RCONServer("0.0.0.0", 27015, "secret")

    @server.on_command
    def handle(command, client):
        if command == "status":
            client.reply("running")

    server.listen_and_serve()

=============================================================================
"""

__version__ = "1.0.0"

from .server import RCONServer
from .config import ServerConfig
from .core import Client
from .protocol import (
    Packet,
    PacketError,
    SERVERDATA_AUTH,
    SERVERDATA_AUTH_RESPONSE,
    SERVERDATA_EXECCOMMAND,
    SERVERDATA_RESPONSE_VALUE,
    DEFAULT_PORT,
)
from .signals import close_on_signals

__all__ = [
    "RCONServer",
    "ServerConfig",
    "Client",
    "Packet",
    "PacketError",
    "SERVERDATA_AUTH",
    "SERVERDATA_AUTH_RESPONSE",
    "SERVERDATA_EXECCOMMAND",
    "SERVERDATA_RESPONSE_VALUE",
    "DEFAULT_PORT",
    "close_on_signals",
    "__version__",
]
