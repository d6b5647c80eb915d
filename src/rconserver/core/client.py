"""
Client handle passed to command handlers.
"""

from dataclasses import dataclass

from ..protocol.packet import Packet, SERVERDATA_RESPONSE_VALUE
from .connection import Connection


@dataclass(frozen=True)
class Client:
    """
    The origin of one exec-command packet.

    Handlers use it to tell connections apart and, if they choose, to
    write a response straight back. The handle does not own the
    connection: the session closes it, never the handler.

    Attributes:
        connection: The connection the command arrived on.
        packet_id: Id of the EXECCOMMAND packet, for correlating a reply.
    """
    connection: Connection
    packet_id: int

    @property
    def address(self) -> tuple:
        """Client's (ip, port) tuple."""
        return self.connection.address

    @property
    def connection_id(self) -> str:
        return self.connection.id

    def send(self, packet: Packet) -> bool:
        """Write an arbitrary packet to the client. Best effort."""
        return self.connection.send_packet(packet)

    def reply(self, body: str) -> bool:
        """
        Send a single RESPONSE_VALUE packet carrying `body`.

        The packet reuses the command's id. Long output is not split
        across packets.
        """
        return self.send(Packet(id=self.packet_id, type=SERVERDATA_RESPONSE_VALUE, body=body))
