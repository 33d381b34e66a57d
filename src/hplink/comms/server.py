"""
XModem Server Protocol
======================

HP 48GII/49G+/50G calculators include an XModem "server" that accepts
single-byte commands from the host. Each command is followed by nothing,
by a CommandPacket (see hplink.comms.packet), or by an XModem transfer:

    Command          Byte  Follow-up
    ───────────────  ────  ─────────────────────────────────────────────
    Free memory      M     reply: CommandPacket with ASCII decimal number
    Execute          E     CommandPacket with an RPL command; no reply
    Kill server      Q     none; the server exits
    Put file         P     CommandPacket with the name, ACK, 'D', XModem
    Get file         G     CommandPacket with the name, ACK, XModem
    Version          V     reply: CommandPacket with a version string
    List directory   L     reply: CommandPacket of DirectoryEntry records
    Exec file        o     CommandPacket; semantics undocumented

The command byte and its packet go out in a single write. Replies are
acknowledged with ACK; a reply with a bad checksum is answered with NAK
and read again.

Directory records use little-endian fields, unlike the big-endian
CommandPacket header that carries them:

    ┌──────────┬──────────┬───────────────┬─────────────┬─────────────┐
    │ name_len │ name     │ prolog        │ size        │ crc         │
    │ 1 byte   │ n bytes  │ 2 bytes, LE   │ 3 bytes, LE │ 2 bytes, LE │
    └──────────┴──────────┴───────────────┴─────────────┴─────────────┘

Direct Mode
-----------
Without the server, XRECV on the calculator waits for a plain XModem
send and XSEND pushes a plain XModem receive; send_direct() and
receive_direct() cover those cases.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Final, Optional

from hplink.comms.packet import encode_packet, read_packet
from hplink.comms.session import ChecksumMode, ProgressCallback, TransferResult
from hplink.comms.xmodem import (
    ACK,
    BLOCK_SIZE,
    BLOCK_SIZE_1K,
    CAN,
    NAK,
    XModemReceiver,
    XModemSender,
)
from hplink.config import DEFAULT_SETTINGS, LinkSettings
from hplink.errors import (
    CancelledError,
    ChecksumError,
    CommsError,
    ProtocolError,
    RetryExceededError,
)
from hplink.rplobj.prologs import prolog_name

if TYPE_CHECKING:
    from hplink.comms.channel import ByteChannel

# Configure module logger
logger = logging.getLogger(__name__)


# Name and filename text encoding on the calculator side
NAME_ENCODING: Final[str] = "latin-1"

# Fixed part of a directory record after the name
_RECORD_TAIL_SIZE: Final[int] = 2 + 3 + 2


# =============================================================================
# Commands and Records
# =============================================================================

class ServerCommand(Enum):
    """Commands understood by the calculator's XModem server."""

    GET_FREE_MEMORY = "M"
    EXECUTE = "E"
    KILL = "Q"
    PUT = "P"
    GET = "G"
    VERSION = "V"
    LIST_DIRECTORY = "L"
    EXEC_FILE = "o"

    @property
    def wire(self) -> bytes:
        """The command as sent on the wire."""
        return self.value.encode("ascii")


@dataclass(frozen=True)
class DirectoryEntry:
    """
    One variable in the calculator's current directory.

    Attributes:
        name: Variable name.
        prolog: Low 16 bits of the object's prolog address.
        size: Object size as reported by the server.
        crc: Object checksum as reported by the server.
    """

    name: str
    prolog: int
    size: int
    crc: int

    @property
    def type_name(self) -> str:
        return prolog_name(self.prolog)

    def __str__(self) -> str:
        return f"{self.name:<16} {self.type_name:<12} {self.size:>8}  #{self.crc:04X}h"


def decode_directory(payload: bytes) -> list[DirectoryEntry]:
    """
    Decode the reply to an L command.

    Args:
        payload: CommandPacket payload, a concatenation of records.

    Returns:
        Entries in the order the server sent them.

    Raises:
        ProtocolError: If a record runs past the end of the payload.

    Example:
        >>> decode_directory(b"\\x01A\\x2c\\x2a\\x06\\x00\\x00\\x34\\x12")
        [DirectoryEntry(name='A', prolog=10796, size=6, crc=4660)]
    """
    entries = []
    pos = 0

    while pos < len(payload):
        start = pos
        name_len = payload[pos]
        pos += 1
        if pos + name_len + _RECORD_TAIL_SIZE > len(payload):
            raise ProtocolError(f"Directory record at offset {start} is truncated")

        name = payload[pos:pos + name_len].decode(NAME_ENCODING)
        pos += name_len
        prolog = int.from_bytes(payload[pos:pos + 2], "little")
        pos += 2
        size = int.from_bytes(payload[pos:pos + 3], "little")
        pos += 3
        crc = int.from_bytes(payload[pos:pos + 2], "little")
        pos += 2

        entries.append(DirectoryEntry(name=name, prolog=prolog, size=size, crc=crc))

    return entries


def encode_directory(entries: list[DirectoryEntry]) -> bytes:
    """Encode entries in the L reply layout (inverse of decode_directory)."""
    out = bytearray()
    for entry in entries:
        name = entry.name.encode(NAME_ENCODING)
        if len(name) > 255:
            raise ValueError(f"Name too long: {entry.name!r}")
        out.append(len(name))
        out += name
        out += entry.prolog.to_bytes(2, "little")
        out += entry.size.to_bytes(3, "little")
        out += entry.crc.to_bytes(2, "little")
    return bytes(out)


# =============================================================================
# Server Client
# =============================================================================

class XModemServer:
    """
    Host side of the calculator's XModem server.

    The channel must be connected to a calculator running the server
    (started on the calculator with XSERV). Reply-bearing commands raise
    CommsError subclasses; file transfers return a TransferResult.

    Example:
        server = XModemServer(channel)
        print(server.version())
        result = server.put("GAME", Path("game.hp").read_bytes())
        server.finish()
    """

    def __init__(self, channel: "ByteChannel", settings: Optional[LinkSettings] = None):
        self.channel = channel
        self.settings = settings or DEFAULT_SETTINGS

    # -------------------------------------------------------------------------
    # Wire helpers
    # -------------------------------------------------------------------------

    def _send_command(self, command: ServerCommand, payload: Optional[bytes] = None) -> None:
        wire = command.wire
        if payload is not None:
            wire += encode_packet(payload)
        logger.debug("TX: command %s (%d bytes)", command.value, len(wire))
        self.channel.write(wire)

    def _settle(self) -> None:
        if self.settings.command_delay:
            time.sleep(self.settings.command_delay)

    def _await_ack(self, command: ServerCommand) -> None:
        """
        Wait for the server to accept a command.

        Raises:
            ProtocolError: On NAK or any other unexpected byte.
            CancelledError: On CAN.
            TimeoutError: If nothing arrives.
        """
        reply = self.channel.read(1, timeout=self.settings.read_timeout)[0]
        if reply == ACK:
            return
        if reply == NAK:
            raise ProtocolError(f"Server rejected command {command.value!r}")
        if reply == CAN:
            raise CancelledError(f"Server cancelled command {command.value!r}")
        raise ProtocolError(
            f"Unexpected reply 0x{reply:02X} to command {command.value!r}"
        )

    def _read_reply(self) -> bytes:
        """Read and acknowledge one reply packet, NAKing corrupt ones."""
        attempts = 0
        while True:
            try:
                packet = read_packet(self.channel, timeout=self.settings.read_timeout)
            except ChecksumError as e:
                attempts += 1
                if attempts > self.settings.max_retries:
                    raise RetryExceededError(
                        f"Reply still corrupt after {attempts} attempts"
                    ) from e
                logger.warning("Corrupt reply (%s), requesting resend", e)
                self.channel.write(bytes([NAK]))
                continue

            self.channel.write(bytes([ACK]))
            return packet.payload

    @staticmethod
    def _encode_name(name: str) -> bytes:
        try:
            encoded = name.encode(NAME_ENCODING)
        except UnicodeEncodeError:
            raise ValueError(f"Name {name!r} cannot be represented on the calculator")
        if not encoded:
            raise ValueError("Name cannot be empty")
        return encoded

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def free_memory(self) -> int:
        """
        Return free calculator memory in bytes (M).

        Raises:
            ProtocolError: If the reply is not a decimal number.
        """
        self._send_command(ServerCommand.GET_FREE_MEMORY)
        self._settle()
        text = self._read_reply().decode("ascii", errors="replace").strip()
        try:
            return int(text)
        except ValueError:
            raise ProtocolError(f"Free memory reply is not a number: {text!r}")

    def execute(self, command: str) -> None:
        """Run an RPL command line on the calculator (E). No reply."""
        logger.info("Executing %r", command)
        self._send_command(ServerCommand.EXECUTE, command.encode(NAME_ENCODING))

    def kill(self) -> None:
        """Terminate the server (Q)."""
        logger.info("Stopping XModem server")
        self._send_command(ServerCommand.KILL)

    def finish(self) -> None:
        """Stop the server after a transfer; Q is ignored if sent too soon."""
        self._settle()
        self.kill()

    def version(self) -> str:
        """Return the server's version string (V)."""
        self._send_command(ServerCommand.VERSION)
        return self._read_reply().decode(NAME_ENCODING).strip()

    def list_directory(self) -> list[DirectoryEntry]:
        """List the calculator's current directory (L)."""
        self._send_command(ServerCommand.LIST_DIRECTORY)
        self._settle()
        return decode_directory(self._read_reply())

    def exec_file(self, payload: bytes) -> None:
        """
        Send the o command with payload.

        The server's handling of this command is undocumented. The packet
        is sent as given and no reply is read.
        """
        logger.warning("Command 'o' is unverified; sending %d bytes as-is", len(payload))
        self._send_command(ServerCommand.EXEC_FILE, payload)

    def put(
        self,
        name: str,
        data: bytes,
        progress: Optional[ProgressCallback] = None,
    ) -> TransferResult:
        """
        Store data on the calculator as variable name (P).

        The server acknowledges the name, then sends 'D' and receives the
        file with Conn4x CRC frames (1K blocks while a full 1K remains).

        Returns:
            TransferResult of the XModem send, or a failed result if the
            server refused the name.
        """
        logger.info("Putting %s (%d bytes)", name, len(data))
        try:
            self._send_command(ServerCommand.PUT, self._encode_name(name))
            self._await_ack(ServerCommand.PUT)
        except CommsError as e:
            return TransferResult.failure(e)

        sender = XModemSender(self.channel, self.settings, progress)
        return sender.send(data, block_size=BLOCK_SIZE_1K)

    def get(self, name: str, progress: Optional[ProgressCallback] = None) -> TransferResult:
        """
        Fetch variable name from the calculator (G).

        The server always sends 128-byte checksum frames.
        """
        logger.info("Getting %s", name)
        try:
            self._send_command(ServerCommand.GET, self._encode_name(name))
            self._await_ack(ServerCommand.GET)
        except CommsError as e:
            return TransferResult.failure(e)

        receiver = XModemReceiver(self.channel, self.settings, progress, ChecksumMode.CHECKSUM)
        return receiver.receive()


# =============================================================================
# Direct Mode
# =============================================================================

def send_direct(
    channel: "ByteChannel",
    data: bytes,
    settings: Optional[LinkSettings] = None,
    progress: Optional[ProgressCallback] = None,
) -> TransferResult:
    """Send data to a calculator waiting in XRECV."""
    return XModemSender(channel, settings, progress).send(data, block_size=BLOCK_SIZE)


def receive_direct(
    channel: "ByteChannel",
    settings: Optional[LinkSettings] = None,
    progress: Optional[ProgressCallback] = None,
) -> TransferResult:
    """Receive a file from a calculator running XSEND."""
    return XModemReceiver(channel, settings, progress, ChecksumMode.CHECKSUM).receive()
