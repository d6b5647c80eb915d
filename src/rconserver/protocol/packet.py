"""
=============================================================================
RCON PACKET CODEC
=============================================================================

Encoding and decoding of the Source RCON wire format.

=============================================================================
WIRE FORMAT
=============================================================================

Every packet on the wire is a length-prefixed frame. All integers are
signed 32-bit, little-endian:

    ┌──────────┬──────────┬──────────┬─────────────────┬──────┬──────┐
    │  length  │    id    │   type   │      body       │ 0x00 │ 0x00 │
    │  int32   │  int32   │  int32   │  n bytes (UTF-8)│      │      │
    └──────────┴──────────┴──────────┴─────────────────┴──────┴──────┘
               └──────────────────── length bytes ────────────────────┘

    length = 4 (id) + 4 (type) + n (body) + 2 (terminators)

The smallest legal frame therefore declares a length of 10: an empty body
followed by its NUL terminator and the trailing NUL required by the
framing.

=============================================================================
PACKET TYPES
=============================================================================

    SERVERDATA_AUTH            3   client → server   password in body
    SERVERDATA_AUTH_RESPONSE   2   server → client   id echoed, or -1
    SERVERDATA_EXECCOMMAND     2   client → server   command text
    SERVERDATA_RESPONSE_VALUE  0   server → client   command output

AUTH_RESPONSE and EXECCOMMAND share the value 2. Direction tells them
apart: a server never receives an auth response, a client never receives
an exec command.

=============================================================================
READING FROM A STREAM
=============================================================================

TCP is a byte stream, so one frame may arrive across several reads. The
decoder reads the 4-byte length first, then exactly `length` more bytes,
and never more. A frame with a bad length or missing terminators is
consumed whole before PacketError is raised, which keeps the next frame
aligned.

=============================================================================
"""

import struct
from dataclasses import dataclass
from typing import BinaryIO, Optional


# =============================================================================
# PROTOCOL CONSTANTS
# =============================================================================

SERVERDATA_AUTH = 3
SERVERDATA_AUTH_RESPONSE = 2
SERVERDATA_EXECCOMMAND = 2
SERVERDATA_RESPONSE_VALUE = 0

DEFAULT_PORT = 27015

# id + type + two NUL bytes
MIN_PACKET_SIZE = 10

# Advisory body size from the protocol convention. Not enforced here.
MAX_BODY_SIZE = 4096

# Auth failures echo this id instead of the request's.
AUTH_FAILED_ID = -1

_LENGTH = struct.Struct("<i")
_HEADER = struct.Struct("<ii")
_TERMINATOR = b"\x00\x00"
_INT32_MIN = -(2 ** 31)
_INT32_MAX = 2 ** 31 - 1

# Upper bound for a single read() while draining or filling a frame.
_CHUNK_SIZE = 8192


class PacketError(ValueError):
    """
    Raised when a packet cannot be encoded or decoded.

    On the read path this usually marks a malformed frame that has already
    been consumed from the stream, so the caller may discard it and read
    the next frame. When ``recoverable`` is False the frame boundary is
    lost (a negative length gives no way to find the next frame) and the
    caller should stop reading from the stream.
    """

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.recoverable = recoverable


@dataclass(frozen=True)
class Packet:
    """
    A single RCON packet.

    Attributes:
        id: Client-chosen correlation token, echoed back in responses.
        type: One of the SERVERDATA_* values.
        body: Packet text (password, command or output).
    """
    id: int
    type: int
    body: str = ""

    def encode(self) -> bytes:
        """Encode this packet as a wire frame."""
        return encode_packet(self)

    @property
    def size(self) -> int:
        """Value of the length field this packet encodes to."""
        return _HEADER.size + len(self.body.encode("utf-8")) + len(_TERMINATOR)


def encode_packet(packet: Packet) -> bytes:
    """
    Encode a packet into a wire frame.

    The length field is always recomputed from the body and both trailing
    NUL bytes are always appended.

    Raises:
        PacketError: If id or type does not fit a signed 32-bit integer.
    """
    for name, value in (("id", packet.id), ("type", packet.type)):
        if not _INT32_MIN <= value <= _INT32_MAX:
            raise PacketError(f"Packet {name} out of int32 range: {value}")

    body = packet.body.encode("utf-8")
    length = _HEADER.size + len(body) + len(_TERMINATOR)
    return (
        _LENGTH.pack(length)
        + _HEADER.pack(packet.id, packet.type)
        + body
        + _TERMINATOR
    )


def decode_packet(data: bytes) -> Packet:
    """
    Decode one complete frame held in memory.

    Args:
        data: The whole frame, length prefix included.

    Raises:
        PacketError: If the frame is truncated, oversized or unterminated.
    """
    if len(data) < _LENGTH.size:
        raise PacketError(f"Frame too short for length field: {len(data)} bytes")

    (length,) = _LENGTH.unpack_from(data)
    if length != len(data) - _LENGTH.size:
        raise PacketError(
            f"Declared length {length} does not match frame of "
            f"{len(data) - _LENGTH.size} bytes"
        )
    if length < MIN_PACKET_SIZE:
        raise PacketError(f"Declared length {length} below minimum {MIN_PACKET_SIZE}")

    return _parse_payload(data[_LENGTH.size:])


def read_packet(stream: BinaryIO, max_size: Optional[int] = None) -> Optional[Packet]:
    """
    Read exactly one frame from a binary stream.

    Blocks until a whole frame is available.

    ┌─────────────────────────────────────────────────────────────────┐
    │                     read_packet() Outcomes                       │
    ├─────────────────────────────────────────────────────────────────┤
    │                                                                  │
    │   stream ends before or inside a frame  →  None                  │
    │   length < 10 or length > max_size      →  PacketError           │
    │   missing 0x00 0x00 terminator          →  PacketError           │
    │   well-formed frame                     →  Packet                │
    │                                                                  │
    └─────────────────────────────────────────────────────────────────┘

    Args:
        stream: Object with a blocking read(n) method, such as
                socket.makefile("rb") or io.BytesIO.
        max_size: Largest length field accepted. None means no limit.

    Returns:
        The decoded packet, or None at end of stream.

    Raises:
        PacketError: If the frame is malformed. The frame has been
                     consumed and the stream is positioned at the next
                     one, unless the error is not recoverable.
    """
    raw_length = _read_exact(stream, _LENGTH.size)
    if raw_length is None:
        return None

    (length,) = _LENGTH.unpack(raw_length)

    if length < 0:
        raise PacketError(f"Negative packet length: {length}", recoverable=False)

    if length < MIN_PACKET_SIZE:
        if _read_exact(stream, length) is None:
            return None
        raise PacketError(f"Declared length {length} below minimum {MIN_PACKET_SIZE}")

    if max_size is not None and length > max_size:
        if not _discard(stream, length):
            return None
        raise PacketError(f"Declared length {length} exceeds limit {max_size}")

    payload = _read_exact(stream, length)
    if payload is None:
        return None

    return _parse_payload(payload)


def _parse_payload(payload: bytes) -> Packet:
    """Decode id, type and body from the bytes following the length field."""
    if not payload.endswith(_TERMINATOR):
        raise PacketError("Packet body is not terminated by two NUL bytes")

    packet_id, packet_type = _HEADER.unpack_from(payload)
    body = payload[_HEADER.size:-len(_TERMINATOR)]
    return Packet(
        id=packet_id,
        type=packet_type,
        body=body.decode("utf-8", errors="replace"),
    )


def _read_exact(stream: BinaryIO, size: int) -> Optional[bytes]:
    """
    Read exactly `size` bytes, or None if the stream ends first.

    Reads in bounded chunks so a large declared length only costs memory
    for the bytes that actually arrive.
    """
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(min(remaining, _CHUNK_SIZE))
        if not chunk:
            return None
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _discard(stream: BinaryIO, size: int) -> bool:
    """Consume and drop `size` bytes. Returns False if the stream ended."""
    remaining = size
    while remaining > 0:
        chunk = stream.read(min(remaining, _CHUNK_SIZE))
        if not chunk:
            return False
        remaining -= len(chunk)
    return True
