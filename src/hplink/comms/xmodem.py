"""
XModem Transport
================

This module implements XModem block transfer as spoken by HP RPL
calculators, both by the built-in XRECV/XSEND commands ("direct mode")
and by the calculator's XModem server.

Frame Structure
---------------
    ┌────────┬─────┬─────────┬──────────────────┬──────────────┐
    │ Header │ Seq │ 255-Seq │ Data             │ Trailer      │
    │ SOH/STX│ 1 B │ 1 B     │ 128 / 1024 bytes │ 1 B sum or   │
    │        │     │         │ (zero padded)    │ 2 B CRC (BE) │
    └────────┴─────┴─────────┴──────────────────┴──────────────┘

- SOH introduces a 128-byte block, STX a 1024-byte block.
- Sequence numbers start at 1 and wrap modulo 256.
- The trailer is the 8-bit sum of the data in classic mode, or the
  Conn4x CRC (see hplink.comms.crc) in CRC mode.

Handshake
---------
The receiving side picks the trailer format by what it sends first:

- NAK → classic checksum mode
- 'C' → Conn4x CRC mode
- 'D' → Conn4x CRC mode (the XModem server's "ready" signal)

The sender then transmits frames, waiting for ACK (advance) or NAK
(retransmit the same frame), and ends with a single EOT that the
receiver ACKs.

Calculator Quirks
-----------------
- XSEND and the server always send 128-byte blocks with a checksum.
- Trailing 0x00 bytes of the last received block are indistinguishable
  from padding and are trimmed. A file that genuinely ends in nulls
  loses them; this is a limitation of the protocol, not of this module.
- Three CAN bytes abort a send, but the calculator firmware reliably
  honours them only in the middle of a 1K block.
"""

import logging
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING, Final, Optional

from hplink.comms.crc import checksum, crc16, crc_from_bytes, crc_to_bytes
from hplink.comms.session import (
    ChecksumMode,
    ProgressCallback,
    TransferResult,
    TransferSession,
    TransferState,
)
from hplink.config import DEFAULT_SETTINGS, LinkSettings
from hplink.errors import (
    CancelledError,
    ChecksumError,
    CommsError,
    CRCError,
    FrameRetryExceededError,
    HandshakeTimeoutError,
    ProtocolError,
    TimeoutError,
)

if TYPE_CHECKING:
    from hplink.comms.channel import ByteChannel

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Protocol Constants
# =============================================================================

SOH: Final[int] = 0x01
STX: Final[int] = 0x02
EOT: Final[int] = 0x04
ACK: Final[int] = 0x06
NAK: Final[int] = 0x15
CAN: Final[int] = 0x18

# Receiver asks for Conn4x CRC mode
CRC_REQUEST: Final[int] = ord("C")

# XModem server is ready for a CRC-mode transfer
SERVER_READY: Final[int] = ord("D")

# Filler for the final block
PAD_BYTE: Final[int] = 0x00

BLOCK_SIZE: Final[int] = 128
BLOCK_SIZE_1K: Final[int] = 1024

# Sent to abort a transfer
CANCEL_SEQUENCE: Final[bytes] = bytes([CAN, CAN, CAN])


class FrameKind(IntEnum):
    """First byte of anything the sender puts on the wire."""

    SOH = SOH
    STX = STX
    EOT = EOT
    CAN = CAN


# =============================================================================
# Frame Class
# =============================================================================

@dataclass(frozen=True)
class XModemFrame:
    """
    One XModem data block.

    Attributes:
        seq: Sequence number (0-255).
        data: Block contents, exactly 128 or 1024 bytes.
        mode: Trailer format.

    Example:
        frame = XModemFrame.build(1, b"HPHP48-R...", ChecksumMode.CRC)
        wire = frame.to_bytes()      # 01 01 FE <128 bytes> <crc hi> <crc lo>
    """

    seq: int
    data: bytes
    mode: ChecksumMode

    def __post_init__(self) -> None:
        if not 0 <= self.seq <= 0xFF:
            raise ValueError(f"Sequence must be 0-255, got {self.seq}")
        if len(self.data) not in (BLOCK_SIZE, BLOCK_SIZE_1K):
            raise ValueError(f"Block must be 128 or 1024 bytes, got {len(self.data)}")

    @property
    def kind(self) -> FrameKind:
        return FrameKind.SOH if len(self.data) == BLOCK_SIZE else FrameKind.STX

    @property
    def block_size(self) -> int:
        return len(self.data)

    @property
    def inv_seq(self) -> int:
        """Ones' complement of the sequence number."""
        return 0xFF - self.seq

    @property
    def trailer(self) -> bytes:
        if self.mode is ChecksumMode.CRC:
            return crc_to_bytes(crc16(self.data))
        return bytes([checksum(self.data)])

    def to_bytes(self) -> bytes:
        """Serialize the frame for transmission."""
        return bytes([self.kind, self.seq, self.inv_seq]) + self.data + self.trailer

    @classmethod
    def build(
        cls,
        seq: int,
        payload: bytes,
        mode: ChecksumMode,
        block_size: int = BLOCK_SIZE,
    ) -> "XModemFrame":
        """
        Build a frame, zero-padding payload to the block size.

        Raises:
            ValueError: If payload is larger than the block.
        """
        if len(payload) > block_size:
            raise ValueError(f"Payload of {len(payload)} bytes exceeds block size {block_size}")
        data = bytes(payload) + bytes([PAD_BYTE]) * (block_size - len(payload))
        return cls(seq=seq & 0xFF, data=data, mode=mode)

    @classmethod
    def from_bytes(cls, raw: bytes, mode: ChecksumMode) -> "XModemFrame":
        """
        Parse and verify a frame received from the wire.

        Raises:
            ProtocolError: If the header, length or inverted sequence
                number is wrong.
            ChecksumError: If the checksum trailer does not match.
            CRCError: If the CRC trailer does not match.
        """
        if not raw:
            raise ProtocolError("Empty frame")

        if raw[0] == SOH:
            block_size = BLOCK_SIZE
        elif raw[0] == STX:
            block_size = BLOCK_SIZE_1K
        else:
            raise ProtocolError(f"Invalid frame header: 0x{raw[0]:02X}")

        expected_len = 3 + block_size + mode.trailer_size
        if len(raw) != expected_len:
            raise ProtocolError(f"Frame is {len(raw)} bytes, expected {expected_len}")

        seq, inv_seq = raw[1], raw[2]
        if inv_seq != 0xFF - seq:
            raise ProtocolError(
                f"Sequence check failed: seq {seq:02X}, complement {inv_seq:02X}"
            )

        data = bytes(raw[3:3 + block_size])
        trailer = raw[3 + block_size:]
        if mode is ChecksumMode.CRC:
            received = crc_from_bytes(trailer)
            calculated = crc16(data)
            if received != calculated:
                raise CRCError(calculated, received)
        else:
            received = trailer[0]
            calculated = checksum(data)
            if received != calculated:
                raise ChecksumError(calculated, received)

        return cls(seq=seq, data=data, mode=mode)

    def __repr__(self) -> str:
        return (
            f"XModemFrame({self.kind.name}, seq={self.seq}, "
            f"mode={self.mode.value}, data={self.data[:8].hex()}...)"
        )


def build_frames(
    data: bytes,
    mode: ChecksumMode,
    block_size: int = BLOCK_SIZE,
) -> list[XModemFrame]:
    """
    Split data into XModem frames.

    With 1K blocks (CRC mode only, as the server expects), every full
    1024-byte chunk becomes an STX frame and the remainder is sent in
    128-byte SOH frames. Otherwise all frames are 128-byte SOH frames.
    Only the last frame is padded.

    Args:
        data: File contents.
        mode: Trailer format for every frame.
        block_size: BLOCK_SIZE or BLOCK_SIZE_1K.

    Returns:
        Frames in transmission order, sequence numbers starting at 1.
        Empty data produces an empty list.

    Example:
        >>> [f.kind.name for f in build_frames(bytes(1776), ChecksumMode.CRC, 1024)]
        ['STX', 'SOH', 'SOH', 'SOH', 'SOH', 'SOH', 'SOH']
    """
    if block_size not in (BLOCK_SIZE, BLOCK_SIZE_1K):
        raise ValueError(f"Block size must be 128 or 1024, got {block_size}")
    if block_size == BLOCK_SIZE_1K and mode is not ChecksumMode.CRC:
        logger.debug("1K blocks need CRC mode, using 128-byte blocks")
        block_size = BLOCK_SIZE

    frames = []
    offset = 0
    seq = 1

    if block_size == BLOCK_SIZE_1K:
        while len(data) - offset >= BLOCK_SIZE_1K:
            frames.append(XModemFrame.build(seq, data[offset:offset + BLOCK_SIZE_1K], mode, BLOCK_SIZE_1K))
            offset += BLOCK_SIZE_1K
            seq += 1

    while offset < len(data):
        frames.append(XModemFrame.build(seq, data[offset:offset + BLOCK_SIZE], mode, BLOCK_SIZE))
        offset += BLOCK_SIZE
        seq += 1

    return frames


def send_cancel(channel: "ByteChannel") -> None:
    """Abort the transfer in progress by sending three CAN bytes."""
    logger.info("Sending cancel")
    channel.write(CANCEL_SEQUENCE)


def _trim_padding(blocks: list[bytes]) -> bytes:
    """Join received blocks, trimming 0x00 padding from the last one only."""
    if not blocks:
        return b""
    return b"".join(blocks[:-1]) + blocks[-1].rstrip(bytes([PAD_BYTE]))


# =============================================================================
# Sender
# =============================================================================

class XModemSender:
    """
    XModem sending state machine (host → calculator).

    Usage:
        sender = XModemSender(channel, progress=progress_bar)
        result = sender.send(data)
        if not result.ok:
            print(result.describe())

    Cancellation is cooperative: request_cancel() (e.g. from the progress
    callback) makes the sender send CAN CAN CAN before the next frame and
    finish as CANCELLED.
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
        self._cancel_requested = False

    def request_cancel(self) -> None:
        """Ask the sender to abort before the next frame."""
        self._cancel_requested = True

    def send(self, data: bytes, block_size: int = BLOCK_SIZE) -> TransferResult:
        """
        Send data to a waiting receiver.

        Args:
            data: Complete file contents.
            block_size: BLOCK_SIZE, or BLOCK_SIZE_1K to send full 1K
                blocks when the receiver picks CRC mode.

        Returns:
            TransferResult. On failure its error is one of
            HandshakeTimeoutError, FrameRetryExceededError,
            RetryExceededError, CancelledError, ProtocolError or
            LinkIOError.
        """
        session = TransferSession(max_retries=self.settings.max_retries)
        self._cancel_requested = False
        total = len(data)

        try:
            session.enter(TransferState.HANDSHAKING)
            mode = self._wait_for_mode()
            frames = build_frames(data, mode, block_size)

            session.mode = mode
            session.block_size = frames[0].block_size if frames else BLOCK_SIZE
            session.sequence = 1
            session.enter(TransferState.TRANSFERRING)
            logger.info(
                "Sending %d bytes in %d blocks (%s mode)", total, len(frames), mode.value
            )

            for frame in frames:
                if self._cancel_requested:
                    send_cancel(self.channel)
                    raise CancelledError("Transfer cancelled by host", sequence=frame.seq)

                payload_len = min(frame.block_size, total - session.bytes_transferred)
                self._send_frame(session, frame, payload_len)
                if self.progress:
                    self.progress(session.bytes_transferred, total)

            self._send_eot(session)
            session.complete()
            logger.info("Transfer complete")

        except CommsError as e:
            logger.debug("Send failed: %s", e)
            session.fail(e)

        return session.result()

    def _wait_for_mode(self) -> ChecksumMode:
        """
        Wait for the receiver's mode signal.

        Raises:
            HandshakeTimeoutError: If no NAK/C/D arrives within the
                configured number of attempts.
            CancelledError: If the receiver sends CAN.
        """
        attempts = self.settings.handshake_attempts
        for attempt in range(1, attempts + 1):
            try:
                signal = self.channel.read(1, timeout=self.settings.handshake_interval)[0]
            except TimeoutError:
                logger.debug("Handshake attempt %d/%d: no signal", attempt, attempts)
                continue

            if signal == NAK:
                logger.info("Receiver requested checksum mode")
                return ChecksumMode.CHECKSUM
            if signal in (CRC_REQUEST, SERVER_READY):
                logger.info("Receiver requested CRC mode (%r)", chr(signal))
                return ChecksumMode.CRC
            if signal == CAN:
                raise CancelledError("Transfer cancelled by calculator during handshake")

            logger.warning("Ignoring byte 0x%02X during handshake", signal)

        raise HandshakeTimeoutError(
            f"No NAK or 'C' from calculator after {attempts} attempts"
        )

    def _send_frame(self, session: TransferSession, frame: XModemFrame, payload_len: int) -> None:
        """Send one frame until it is acknowledged."""
        session.sequence = frame.seq
        wire = frame.to_bytes()

        while True:
            logger.debug(
                "TX: %s seq=%d attempt=%d", frame.kind.name, frame.seq, session.retries + 1
            )
            self.channel.write(wire)

            try:
                reply = self.channel.read(1, timeout=self.settings.read_timeout)[0]
            except TimeoutError:
                session.record_retry("no reply", FrameRetryExceededError)
                continue

            if reply == ACK:
                session.acknowledge(payload_len, (frame.seq + 1) & 0xFF)
                return
            if reply == NAK:
                session.record_retry("NAK", FrameRetryExceededError)
            elif reply == CAN:
                raise CancelledError("Transfer cancelled by calculator", sequence=frame.seq)
            else:
                session.record_retry(f"unexpected reply 0x{reply:02X}", FrameRetryExceededError)

    def _send_eot(self, session: TransferSession) -> None:
        """Send EOT until the receiver acknowledges it."""
        while True:
            logger.debug("TX: EOT")
            self.channel.write(bytes([EOT]))
            try:
                reply = self.channel.read(1, timeout=self.settings.read_timeout)[0]
            except TimeoutError:
                session.record_retry("EOT not acknowledged")
                continue

            if reply == ACK:
                return
            if reply == CAN:
                raise CancelledError("Transfer cancelled by calculator at EOT")
            session.record_retry(f"EOT answered with 0x{reply:02X}")


# =============================================================================
# Receiver
# =============================================================================

class XModemReceiver:
    """
    XModem receiving state machine (calculator → host).

    The calculator only sends 128-byte blocks with a one-byte checksum,
    so the default mode is CHECKSUM; CRC mode is available for peers
    that support it.

    Usage:
        result = XModemReceiver(channel).receive()
        if result.ok:
            Path("out.bin").write_bytes(result.data)
    """

    def __init__(
        self,
        channel: "ByteChannel",
        settings: Optional[LinkSettings] = None,
        progress: Optional[ProgressCallback] = None,
        mode: ChecksumMode = ChecksumMode.CHECKSUM,
    ):
        self.channel = channel
        self.settings = settings or DEFAULT_SETTINGS
        self.progress = progress
        self.mode = mode

    def receive(self) -> TransferResult:
        """
        Receive one file.

        Returns:
            TransferResult whose data is the reconstructed file (empty
            unless the transfer completed).
        """
        session = TransferSession(max_retries=self.settings.max_retries, mode=self.mode)
        blocks: list[bytes] = []

        try:
            session.enter(TransferState.HANDSHAKING)
            if self.settings.receive_delay:
                time.sleep(self.settings.receive_delay)
            header = self._request_start()

            session.sequence = 1
            session.enter(TransferState.TRANSFERRING)

            while header != EOT:
                if header == CAN:
                    raise CancelledError(
                        "Transfer cancelled by calculator", sequence=session.last_acked
                    )
                if header in (SOH, STX):
                    self._receive_frame(session, header, blocks)
                else:
                    logger.warning("Unexpected byte 0x%02X instead of block header", header)
                    session.record_retry("bad block header", FrameRetryExceededError)
                    self._write(NAK)
                header = self._next_header(session)

            self._write(ACK)
            session.complete()
            logger.info("Received %d blocks", session.units)

        except CommsError as e:
            logger.debug("Receive failed: %s", e)
            session.fail(e)

        return session.result(data=_trim_padding(blocks))

    def _write(self, byte: int) -> None:
        self.channel.write(bytes([byte]))

    def _request_start(self) -> int:
        """
        Poll the sender with the mode request until the first byte arrives.

        Returns:
            The first header byte (SOH, STX, EOT or CAN).

        Raises:
            HandshakeTimeoutError: If the sender never starts.
        """
        request = CRC_REQUEST if self.mode is ChecksumMode.CRC else NAK
        attempts = self.settings.handshake_attempts

        for attempt in range(1, attempts + 1):
            logger.debug("Requesting start (%d/%d)", attempt, attempts)
            self._write(request)
            try:
                header = self.channel.read(1, timeout=self.settings.handshake_interval)[0]
            except TimeoutError:
                continue
            if header in (SOH, STX, EOT, CAN):
                return header
            logger.warning("Ignoring byte 0x%02X while waiting for first block", header)

        raise HandshakeTimeoutError(f"Calculator did not start sending after {attempts} attempts")

    def _next_header(self, session: TransferSession) -> int:
        while True:
            try:
                return self.channel.read(1, timeout=self.settings.read_timeout)[0]
            except TimeoutError:
                session.record_retry("timeout waiting for block", FrameRetryExceededError)
                self._write(NAK)

    def _receive_frame(self, session: TransferSession, header: int, blocks: list[bytes]) -> None:
        """Read the rest of a frame, verify it, and ACK or NAK it."""
        block_size = BLOCK_SIZE if header == SOH else BLOCK_SIZE_1K
        try:
            rest = self.channel.read(2 + block_size + self.mode.trailer_size,
                                     timeout=self.settings.read_timeout)
            frame = XModemFrame.from_bytes(bytes([header]) + rest, self.mode)
        except (TimeoutError, ProtocolError, ChecksumError) as e:
            session.record_retry(str(e), FrameRetryExceededError)
            # the rest of a damaged block must not be read as the next header
            self.channel.reset_input()
            self._write(NAK)
            return

        expected = session.sequence
        if frame.seq == expected:
            blocks.append(frame.data)
            self._write(ACK)
            session.acknowledge(frame.block_size, (expected + 1) & 0xFF)
            logger.debug("RX: block seq=%d", frame.seq)
            if self.progress:
                self.progress(session.bytes_transferred, 0)
        elif session.units and frame.seq == (expected - 1) & 0xFF:
            # our ACK was lost and the sender repeated the block
            logger.debug("RX: duplicate block seq=%d", frame.seq)
            self._write(ACK)
        else:
            send_cancel(self.channel)
            raise ProtocolError(
                f"Out of sequence block {frame.seq}, expected {expected}"
            )
