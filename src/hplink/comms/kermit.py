"""
Kermit Transport (send only)
============================

A minimal Kermit sender, enough to store a file on an HP 48-series
calculator whose Kermit server is waiting (or that runs RECV).

A transfer is a fixed conversation; every host packet is acknowledged
with a 'Y' packet of the same sequence number:

    Host                                  Calculator
    ─────────────────────────────────     ───────────────────────
    S  Send-Init (our parameters)    →
                                     ←    Y  (its parameters)
    F  File-Header (file name)       →
                                     ←    Y
    D  Data (repeated)               →
                                     ←    Y
    Z  End of file                   →
                                     ←    Y
    B  Break (end of transaction)    →
                                     ←    Y
    G  Generic "F" (finish server)   →    (only when requested)
                                     ←    Y

Packet Layout
-------------
    MARK LEN SEQ TYPE DATA... CHECK EOL

- MARK is SOH, EOL is CR.
- LEN, SEQ and CHECK are "tochar" encoded (value + 32) so that every
  byte after MARK is printable.
- LEN counts SEQ, TYPE, DATA and CHECK.
- SEQ runs modulo 64.
- CHECK is the type 1 block check: the 6-bit folded sum of LEN..DATA.

Control characters in file data are sent as the QCTL prefix ('#')
followed by the character with bit 6 inverted; a literal '#' is sent
doubled.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Final, Optional

from hplink.comms.session import (
    ProgressCallback,
    TransferResult,
    TransferSession,
    TransferState,
)
from hplink.config import DEFAULT_SETTINGS, LinkSettings
from hplink.errors import (
    ChecksumError,
    CommsError,
    ProtocolError,
    TimeoutError,
    TransferError,
    UnsupportedOperationError,
)

if TYPE_CHECKING:
    from hplink.comms.channel import ByteChannel

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Protocol Constants
# =============================================================================

MARK: Final[int] = 0x01
CR: Final[int] = 0x0D

# Sequence numbers run modulo this
SEQUENCE_MODULUS: Final[int] = 64

# LEN counts SEQ, TYPE and CHECK besides the data
PACKET_OVERHEAD: Final[int] = 3

# Largest LEN a type 1 (short) packet can carry
MAX_PACKET_LENGTH: Final[int] = 94

# Smallest LEN that still carries one quoted pair
MIN_PACKET_LENGTH: Final[int] = PACKET_OVERHEAD + 2

# Bytes skipped while looking for a MARK before giving up
MAX_NOISE_BYTES: Final[int] = 256

# Protocol defaults for Send-Init fields the peer leaves out
DEFAULT_PEER_MAXL: Final[int] = 80
DEFAULT_PEER_TIME: Final[int] = 5


class PacketType(Enum):
    """Kermit packet types used by the sender."""

    SEND_INIT = "S"
    FILE_HEADER = "F"
    DATA = "D"
    EOF = "Z"
    BREAK = "B"
    ACK = "Y"
    NAK = "N"
    ERROR = "E"
    GENERIC = "G"


# =============================================================================
# Character Helpers
# =============================================================================

def tochar(value: int) -> int:
    """Make a small number printable."""
    return value + 32


def unchar(char: int) -> int:
    """Inverse of tochar()."""
    return char - 32


def ctl(char: int) -> int:
    """Toggle a character between control and printable form."""
    return char ^ 64


def block_check_1(fields: bytes) -> int:
    """
    Type 1 block check over LEN, SEQ, TYPE and DATA.

    The byte sum s is folded to six bits as (s + ((s & 192) >> 6)) & 63
    and made printable with tochar().
    """
    s = sum(fields)
    return tochar((s + ((s & 192) >> 6)) & 63)


def next_sequence(seq: int) -> int:
    """Sequence number after seq, wrapping at 64."""
    return (seq + 1) % SEQUENCE_MODULUS


# =============================================================================
# Packet Class
# =============================================================================

@dataclass(frozen=True)
class KermitPacket:
    """
    One Kermit packet.

    Attributes:
        seq: Sequence number (0-63).
        type: Packet type.
        data: Data field, already quoted.

    Example:
        >>> KermitPacket(0, PacketType.BREAK).to_bytes()
        b"\\x01# B'\\r"
    """

    seq: int
    type: PacketType
    data: bytes = b""

    def __post_init__(self) -> None:
        if not 0 <= self.seq < SEQUENCE_MODULUS:
            raise ValueError(f"Sequence must be 0-63, got {self.seq}")
        if len(self.data) + PACKET_OVERHEAD > MAX_PACKET_LENGTH:
            raise ValueError(f"Data field too long: {len(self.data)} bytes")

    @property
    def length(self) -> int:
        """Value of the LEN field."""
        return len(self.data) + PACKET_OVERHEAD

    def to_bytes(self, eol: int = CR) -> bytes:
        """Serialize the packet, terminated with eol."""
        fields = bytes([tochar(self.length), tochar(self.seq), ord(self.type.value)]) + self.data
        return bytes([MARK]) + fields + bytes([block_check_1(fields), eol])

    @classmethod
    def from_bytes(cls, raw: bytes) -> "KermitPacket":
        """
        Parse a packet starting at its MARK. Any trailing EOL is ignored.

        Raises:
            ProtocolError: If the packet is malformed or of unknown type.
            ChecksumError: If the block check does not match.
        """
        if len(raw) < 2 or raw[0] != MARK:
            raise ProtocolError("Kermit packet does not start with MARK")

        length = unchar(raw[1])
        if not PACKET_OVERHEAD <= length <= MAX_PACKET_LENGTH:
            raise ProtocolError(f"Invalid packet length {length}")
        if len(raw) < 2 + length:
            raise ProtocolError(f"Kermit packet truncated (LEN {length}, got {len(raw) - 2})")

        received = raw[1 + length]
        calculated = block_check_1(raw[1:1 + length])
        if received != calculated:
            raise ChecksumError(calculated, received)

        try:
            packet_type = PacketType(chr(raw[3]))
        except ValueError:
            raise ProtocolError(f"Unknown Kermit packet type {chr(raw[3])!r}")

        return cls(seq=unchar(raw[2]) % SEQUENCE_MODULUS, type=packet_type,
                   data=bytes(raw[4:1 + length]))

    def __repr__(self) -> str:
        return f"KermitPacket({self.type.value}, seq={self.seq}, data={self.data[:16]!r})"


# =============================================================================
# Send-Init Parameters
# =============================================================================

@dataclass(frozen=True)
class SendInitParams:
    """
    Capabilities exchanged in the Send-Init packet and its ACK.

    Attributes:
        maxl: Longest packet (LEN value) the sender of these parameters
            accepts.
        time: Seconds to wait before timing out.
        npad: Padding characters wanted before each packet.
        padc: Padding character.
        eol: Packet terminator.
        qctl: Control prefix.
        qbin: 8th-bit prefix ('Y' agrees without asking for it).
        chkt: Block check type.
    """

    maxl: int = MAX_PACKET_LENGTH
    time: int = 2
    npad: int = 0
    padc: int = 0
    eol: int = CR
    qctl: str = "#"
    qbin: str = "Y"
    chkt: str = "1"

    def to_data(self) -> bytes:
        return bytes([
            tochar(self.maxl),
            tochar(self.time),
            tochar(self.npad),
            ctl(self.padc),
            tochar(self.eol),
            ord(self.qctl),
            ord(self.qbin),
            ord(self.chkt),
        ])

    @classmethod
    def from_data(cls, data: bytes) -> "SendInitParams":
        """
        Parse a Send-Init data field.

        Fields the peer leaves out (or sends as blank for MAXL and TIME)
        take the Kermit protocol defaults.
        """
        def field(index: int) -> Optional[int]:
            return data[index] if len(data) > index else None

        maxl = field(0)
        time_ = field(1)
        npad = field(2)
        padc = field(3)
        eol = field(4)
        qctl = field(5)
        qbin = field(6)
        chkt = field(7)

        return cls(
            maxl=unchar(maxl) if maxl not in (None, 0x20) else DEFAULT_PEER_MAXL,
            time=unchar(time_) if time_ not in (None, 0x20) else DEFAULT_PEER_TIME,
            npad=unchar(npad) if npad is not None else 0,
            padc=ctl(padc) if padc is not None else 0,
            eol=unchar(eol) if eol is not None else CR,
            qctl=chr(qctl) if qctl not in (None, 0x20) else "#",
            qbin=chr(qbin) if qbin is not None else "N",
            chkt=chr(chkt) if chkt not in (None, 0x20) else "1",
        )


# =============================================================================
# Data Encoding
# =============================================================================

def encode_data(data: bytes, qctl: str = "#") -> bytes:
    """
    Apply control-prefix quoting.

    Bytes whose low seven bits are a control character or DEL become
    qctl + ctl(byte); a byte whose low seven bits equal qctl is sent
    as qctl + byte. The 8th bit is carried through unchanged.

    Example:
        >>> encode_data(b"A\\r#")
        b'A#M##'
    """
    prefix = ord(qctl)
    out = bytearray()
    for b in data:
        low7 = b & 0x7F
        if low7 < 32 or low7 == 127:
            out += bytes([prefix, ctl(b)])
        elif low7 == prefix:
            out += bytes([prefix, b])
        else:
            out.append(b)
    return bytes(out)


def decode_data(data: bytes, qctl: str = "#") -> bytes:
    """
    Undo encode_data().

    Raises:
        ProtocolError: If data ends with a dangling prefix.
    """
    prefix = ord(qctl)
    out = bytearray()
    i = 0
    while i < len(data):
        b = data[i]
        if b == prefix:
            if i + 1 >= len(data):
                raise ProtocolError("Quoted data ends with a bare prefix")
            quoted = data[i + 1]
            out.append(quoted if (quoted & 0x7F) == prefix else ctl(quoted))
            i += 2
        else:
            out.append(b)
            i += 1
    return bytes(out)


def packetize(encoded: bytes, capacity: int, qctl: str = "#") -> list[bytes]:
    """
    Split quoted data into data fields of at most capacity bytes.

    A prefix and the character it quotes always land in the same field.

    Raises:
        ValueError: If capacity cannot hold a quoted pair.
    """
    if capacity < 2:
        raise ValueError(f"Packet capacity {capacity} is too small")

    prefix = ord(qctl)
    chunks = []
    current = bytearray()
    i = 0
    while i < len(encoded):
        unit_len = 2 if encoded[i] == prefix else 1
        if len(current) + unit_len > capacity:
            chunks.append(bytes(current))
            current = bytearray()
        current += encoded[i:i + unit_len]
        i += unit_len
    if current:
        chunks.append(bytes(current))
    return chunks


# =============================================================================
# Sender
# =============================================================================

class KermitSender:
    """
    Kermit send-only state machine.

    Usage:
        sender = KermitSender(channel, progress=progress_bar)
        result = sender.send("GAME", data, finish=True)
        print(result.describe())
    """

    def __init__(
        self,
        channel: "ByteChannel",
        settings: Optional[LinkSettings] = None,
        progress: Optional[ProgressCallback] = None,
    ):
        self.channel = channel
        self.settings = settings or DEFAULT_SETTINGS
        self.progress = progress
        self.local = SendInitParams(
            maxl=self.settings.kermit_packet_size,
            time=self.settings.kermit_timeout,
        )

    def send(self, name: str, data: bytes, finish: bool = False) -> TransferResult:
        """
        Send data to the calculator as file name.

        Args:
            name: Destination file (variable) name.
            data: File contents.
            finish: Also tell the Kermit server to exit afterwards.

        Returns:
            TransferResult; units counts every acknowledged packet.
        """
        session = TransferSession(max_retries=self.settings.max_retries)
        total = len(data)

        try:
            session.enter(TransferState.NEGOTIATING)
            reply = self._exchange(session, PacketType.SEND_INIT, self.local.to_data())
            peer = SendInitParams.from_data(reply.data)
            if peer.maxl < MIN_PACKET_LENGTH:
                raise ProtocolError(f"Calculator packet size {peer.maxl} is too small")
            capacity = min(self.local.maxl, peer.maxl) - PACKET_OVERHEAD
            logger.info("Negotiated packet size %d (peer MAXL %d)", capacity, peer.maxl)

            session.enter(TransferState.SENDING_HEADER)
            header = encode_data(name.encode("latin-1"))
            if len(header) > capacity:
                raise TransferError(f"File name {name!r} does not fit in one packet")
            self._exchange(session, PacketType.FILE_HEADER, header)

            session.enter(TransferState.SENDING_DATA)
            chunks = packetize(encode_data(data, self.local.qctl), capacity, self.local.qctl)
            for chunk in chunks:
                raw_len = len(decode_data(chunk, self.local.qctl))
                self._exchange(session, PacketType.DATA, chunk, raw_len)
                if self.progress:
                    self.progress(session.bytes_transferred, total)

            session.enter(TransferState.SENDING_EOF)
            self._exchange(session, PacketType.EOF)

            session.enter(TransferState.CLOSING)
            self._exchange(session, PacketType.BREAK)

            if finish:
                logger.info("Finishing Kermit server")
                session.sequence = 0
                self._exchange(session, PacketType.GENERIC, b"F")

            session.complete()
            logger.info("Kermit transfer complete: %d packets", session.units)

        except CommsError as e:
            logger.debug("Kermit send failed: %s", e)
            session.fail(e)

        return session.result()

    def receive(self) -> TransferResult:
        """Kermit receive is not implemented; always raises."""
        raise UnsupportedOperationError(
            "Kermit receive is not supported; use XModem to fetch files"
        )

    def _exchange(
        self,
        session: TransferSession,
        packet_type: PacketType,
        data: bytes = b"",
        nbytes: int = 0,
    ) -> KermitPacket:
        """
        Send one packet until it is acknowledged.

        A NAK for the following sequence number implies the packet was
        received, so it counts as an ACK.

        Raises:
            RetryExceededError: When the retry ceiling is passed.
            ProtocolError: If the peer sends an Error packet.
        """
        seq = session.sequence
        wire = KermitPacket(seq, packet_type, data).to_bytes(self.local.eol)

        while True:
            logger.debug("TX: %s seq=%d len=%d", packet_type.value, seq, len(data))
            self.channel.write(wire)

            try:
                reply = self._read_packet()
            except (TimeoutError, ChecksumError, ProtocolError) as e:
                session.record_retry(str(e))
                continue

            logger.debug("RX: %s seq=%d", reply.type.value, reply.seq)
            if reply.type is PacketType.ERROR:
                raise ProtocolError(
                    f"Calculator reported error: {reply.data.decode('latin-1')}"
                )
            if (reply.type is PacketType.ACK and reply.seq == seq) or (
                reply.type is PacketType.NAK and reply.seq == next_sequence(seq)
            ):
                session.acknowledge(nbytes, next_sequence(seq))
                return reply

            session.record_retry(f"{reply.type.name} for sequence {reply.seq}")

    def _read_packet(self) -> KermitPacket:
        timeout = self.settings.read_timeout
        for _ in range(MAX_NOISE_BYTES):
            if self.channel.read(1, timeout)[0] == MARK:
                break
        else:
            raise ProtocolError("No packet mark from calculator")

        length_char = self.channel.read(1, timeout)
        length = unchar(length_char[0])
        if not PACKET_OVERHEAD <= length <= MAX_PACKET_LENGTH:
            raise ProtocolError(f"Invalid packet length {length}")
        body = self.channel.read(length, timeout)
        return KermitPacket.from_bytes(bytes([MARK]) + length_char + body)
