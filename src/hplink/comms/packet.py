"""
Command Packet Codec
====================

The calculator's XModem server exchanges commands and short replies in
a small envelope:

    ┌──────────────┬─────────────────┬──────────┐
    │ Length       │ Payload         │ Checksum │
    │ 2 bytes, BE  │ 0-65535 bytes   │ 1 byte   │
    └──────────────┴─────────────────┴──────────┘

- Length is big-endian and counts payload bytes only.
- Checksum is the 8-bit sum of the payload bytes.

The envelope is never used inside XModem or Kermit block framing. Note
that the payload of a directory listing uses little-endian fields (see
hplink.comms.server); only this header is big-endian.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final, Optional

from hplink.comms.crc import checksum
from hplink.errors import ChecksumError, ProtocolError

if TYPE_CHECKING:
    from hplink.comms.channel import ByteChannel

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Length prefix size
HEADER_SIZE: Final[int] = 2

# Largest payload the 16-bit length can describe
MAX_PAYLOAD_SIZE: Final[int] = 0xFFFF


# =============================================================================
# Packet Class
# =============================================================================

@dataclass(frozen=True)
class CommandPacket:
    """
    One command or reply envelope.

    Attributes:
        length: Payload length, as carried in the header.
        payload: Packet contents.
        checksum: 8-bit sum of the payload.

    The invariants length == len(payload) and checksum == sum(payload)
    mod 256 are checked on construction; use from_payload() to build a
    packet from data.

    Example:
        packet = CommandPacket.from_payload(b"MYPRG")
        wire = packet.encode()        # b'\\x00\\x05MYPRG\\x8f'
        CommandPacket.decode(wire).payload   # b'MYPRG'
    """

    length: int
    payload: bytes
    checksum: int

    def __post_init__(self) -> None:
        if not isinstance(self.payload, bytes):
            raise TypeError(f"Payload must be bytes, got {type(self.payload).__name__}")
        if len(self.payload) > MAX_PAYLOAD_SIZE:
            raise ValueError(
                f"Payload too large: {len(self.payload)} bytes, max {MAX_PAYLOAD_SIZE}"
            )
        if self.length != len(self.payload):
            raise ValueError(
                f"Length field {self.length} does not match payload size {len(self.payload)}"
            )
        if self.checksum != checksum(self.payload):
            raise ChecksumError(checksum(self.payload), self.checksum)

    @classmethod
    def from_payload(cls, payload: bytes) -> "CommandPacket":
        """Build a packet around payload, computing length and checksum."""
        payload = bytes(payload)
        return cls(length=len(payload), payload=payload, checksum=checksum(payload))

    def encode(self) -> bytes:
        """Serialize as length (big-endian), payload, checksum."""
        return self.length.to_bytes(HEADER_SIZE, "big") + self.payload + bytes([self.checksum])

    @classmethod
    def decode(cls, data: bytes) -> "CommandPacket":
        """
        Parse a packet from raw bytes.

        Bytes after the checksum are ignored.

        Raises:
            ProtocolError: If data is shorter than the header says.
            ChecksumError: If the trailing checksum does not match.
        """
        if len(data) < HEADER_SIZE + 1:
            raise ProtocolError(f"Command packet too short: {len(data)} bytes")

        length = int.from_bytes(data[:HEADER_SIZE], "big")
        end = HEADER_SIZE + length
        if len(data) < end + 1:
            raise ProtocolError(
                f"Command packet truncated: header says {length} bytes, "
                f"got {len(data) - HEADER_SIZE - 1}"
            )

        payload = bytes(data[HEADER_SIZE:end])
        received = data[end]
        calculated = checksum(payload)
        if received != calculated:
            raise ChecksumError(calculated, received)

        logger.debug("Decoded command packet: len=%d", length)
        return cls(length=length, payload=payload, checksum=received)

    def __repr__(self) -> str:
        data_repr = (
            self.payload[:20].hex() + "..."
            if len(self.payload) > 20
            else self.payload.hex()
        )
        return f"CommandPacket(len={self.length}, payload={data_repr}, sum={self.checksum:02X})"


# =============================================================================
# Convenience Functions
# =============================================================================

def encode_packet(payload: bytes) -> bytes:
    """Encode payload into a command packet ready for the wire."""
    return CommandPacket.from_payload(payload).encode()


def decode_packet(data: bytes) -> CommandPacket:
    """Decode a command packet from wire bytes."""
    return CommandPacket.decode(data)


def read_packet(channel: "ByteChannel", timeout: Optional[float] = None) -> CommandPacket:
    """
    Read one command packet from a channel.

    Reads the two-byte header, then exactly the payload and checksum.

    Raises:
        TimeoutError: If the packet does not arrive in time.
        ChecksumError: If the checksum does not match.
    """
    header = channel.read(HEADER_SIZE, timeout)
    length = int.from_bytes(header, "big")
    body = channel.read(length + 1, timeout)
    return CommandPacket.decode(header + body)
