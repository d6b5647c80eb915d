"""
=============================================================================
RCON PROTOCOL
=============================================================================

The wire-level half of the server: packet types, framing and the codec
that turns bytes from TCP into Packet objects and back.

=============================================================================
AUTH HANDSHAKE AT A GLANCE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      RCON Session Exchange                           │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   CLIENT                                         SERVER              │
    │      │                                              │                │
    │      │   AUTH {id: 1, body: "secret"}               │                │
    │      │  ─────────────────────────────────────────►  │                │
    │      │                                              │                │
    │      │               AUTH_RESPONSE {id: 1}          │                │
    │      │  ◄─────────────────────────────────────────  │                │
    │      │                                              │                │
    │      │   EXECCOMMAND {id: 2, body: "status"}        │                │
    │      │  ─────────────────────────────────────────►  │                │
    │      │                                   handler("status", client)   │
    │                                                                      │
    │   Wrong password: AUTH_RESPONSE {id: -1}, then the server closes.    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .packet import (
    Packet,
    PacketError,
    encode_packet,
    decode_packet,
    read_packet,
    # Packet types
    SERVERDATA_AUTH,            # 3
    SERVERDATA_AUTH_RESPONSE,   # 2
    SERVERDATA_EXECCOMMAND,     # 2
    SERVERDATA_RESPONSE_VALUE,  # 0
    # Framing
    AUTH_FAILED_ID,
    DEFAULT_PORT,
    MIN_PACKET_SIZE,
    MAX_BODY_SIZE,
)

__all__ = [
    # Codec
    "Packet",
    "PacketError",
    "encode_packet",
    "decode_packet",
    "read_packet",

    # Packet types
    "SERVERDATA_AUTH",
    "SERVERDATA_AUTH_RESPONSE",
    "SERVERDATA_EXECCOMMAND",
    "SERVERDATA_RESPONSE_VALUE",

    # Constants
    "AUTH_FAILED_ID",
    "DEFAULT_PORT",
    "MIN_PACKET_SIZE",
    "MAX_BODY_SIZE",
]
