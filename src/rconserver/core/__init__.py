"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The networking and session plumbing behind RCONServer.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         SOCKET SERVER                                │
    │  • Creates the TCP listening socket, binds, listens                 │
    │  • Runs the accept() loop                                           │
    │  • Closes banned clients before any I/O                             │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    │ Hands off new connections
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          CONNECTION                                  │
    │  • Wraps a client socket                                            │
    │  • Reads whole RCON frames, writes packets, closes cleanly          │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    │ Driven by one thread each
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                           SESSION                                    │
    │  • UNAUTHENTICATED → AUTHENTICATED → CLOSED                         │
    │  • Answers AUTH, forwards EXECCOMMAND with a Client handle           │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .socket_server import SocketServer, address_without_port
from .connection import Connection
from .client import Client
from .session import Session, SessionState

__all__ = [
    "SocketServer",         # TCP listener and accept loop
    "address_without_port", # "host:port" → "host"
    "Connection",           # Client socket wrapper - framed I/O
    "Client",               # Handle passed to command handlers
    "Session",              # Per-connection auth state machine
    "SessionState",         # UNAUTHENTICATED / AUTHENTICATED / CLOSED
]
