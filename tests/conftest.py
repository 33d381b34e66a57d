"""
Shared Test Fixtures
====================

The protocol engines only need a byte channel, so every test runs them
against an in-memory ScriptedChannel instead of a serial port.

A ScriptedChannel holds a queue of inbound bytes and logs every write.
An optional on_write hook plays the calculator: it receives each write
and returns the bytes the calculator would answer with, which are
appended to the inbound queue. The peer classes below are such hooks.
"""

from typing import Callable, Optional

import pytest

from hplink.comms.kermit import KermitPacket, PacketType, SendInitParams
from hplink.comms.session import ChecksumMode
from hplink.comms.xmodem import (
    ACK,
    CANCEL_SEQUENCE,
    EOT,
    NAK,
    SOH,
    STX,
    XModemFrame,
)
from hplink.config import LinkSettings
from hplink.errors import ChecksumError, TimeoutError


# =============================================================================
# In-memory Channel
# =============================================================================

class ScriptedChannel:
    """ByteChannel backed by an inbound queue and a write log."""

    def __init__(
        self,
        inbound: bytes = b"",
        on_write: Optional[Callable[[bytes], bytes]] = None,
    ):
        self.inbound = bytearray(inbound)
        self.writes: list[bytes] = []
        self.on_write = on_write

    def feed(self, data: bytes) -> None:
        self.inbound += data

    def read(self, size: int = 1, timeout: Optional[float] = None) -> bytes:
        if len(self.inbound) < size:
            partial = bytes(self.inbound)
            self.inbound.clear()
            raise TimeoutError(f"Scripted channel has {len(partial)} of {size} bytes",
                               partial=partial)
        data = bytes(self.inbound[:size])
        del self.inbound[:size]
        return data

    def write(self, data: bytes) -> None:
        self.writes.append(bytes(data))
        if self.on_write is not None:
            reply = self.on_write(bytes(data))
            if reply:
                self.inbound += reply

    def reset_input(self) -> None:
        self.inbound.clear()

    @property
    def written(self) -> bytes:
        return b"".join(self.writes)


# =============================================================================
# Simulated Calculators
# =============================================================================

class XModemReceiverPeer:
    """
    Calculator receiving an XModem send.

    Verifies every frame and ACKs it. Frames whose sequence number is in
    corrupt_once get one payload byte flipped "on the line" the first
    time they arrive, so the verification fails and the peer NAKs.
    """

    def __init__(self, mode: ChecksumMode, corrupt_once: tuple[int, ...] = ()):
        self.mode = mode
        self.corrupt_once = set(corrupt_once)
        self.frames: list[XModemFrame] = []
        self.naks = 0
        self.eot_received = False
        self.cancelled = False

    def __call__(self, data: bytes) -> bytes:
        if data == bytes([EOT]):
            self.eot_received = True
            return bytes([ACK])
        if data == CANCEL_SEQUENCE:
            self.cancelled = True
            return b""
        if data[0] not in (SOH, STX):
            # a server command after the transfer
            return b""

        if data[1] in self.corrupt_once:
            self.corrupt_once.discard(data[1])
            damaged = bytearray(data)
            damaged[3] ^= 0xFF
            data = bytes(damaged)

        try:
            frame = XModemFrame.from_bytes(data, self.mode)
        except ChecksumError:
            self.naks += 1
            return bytes([NAK])

        self.frames.append(frame)
        return bytes([ACK])

    @property
    def data(self) -> bytes:
        return b"".join(frame.data for frame in self.frames)


class XModemSenderPeer:
    """
    Calculator sending a file with XModem (XSEND or the server's G).

    Sends the current frame on NAK or 'C', the next one on ACK, and EOT
    after the last frame.
    """

    def __init__(self, frames: list[XModemFrame]):
        self.frames = frames
        self.index = 0
        self.eot_sent = False
        self.done = False

    def _current(self) -> bytes:
        if self.index < len(self.frames):
            return self.frames[self.index].to_bytes()
        self.eot_sent = True
        return bytes([EOT])

    def __call__(self, data: bytes) -> bytes:
        reply = b""
        for byte in data:
            if self.done:
                break
            if byte in (NAK, ord("C")):
                reply += self._current()
            elif byte == ACK:
                if self.eot_sent:
                    self.done = True
                else:
                    self.index += 1
                    reply += self._current()
        return reply


class ServerPeer:
    """
    Calculator's XModem server.

    Answers the first write (a command and its packet) with
    command_reply and hands everything after it to transfer_peer.
    """

    def __init__(self, command_reply: bytes, transfer_peer=None):
        self.command_reply = command_reply
        self.transfer_peer = transfer_peer
        self.command: Optional[bytes] = None

    def __call__(self, data: bytes) -> bytes:
        if self.command is None:
            self.command = data
            return self.command_reply
        if self.transfer_peer is None:
            return b""
        return self.transfer_peer(data)


class KermitReceiverPeer:
    """
    Calculator's Kermit server.

    ACKs every packet with its own sequence number; the Send-Init ACK
    carries a MAXL of maxl.
    """

    def __init__(self, maxl: int = 94):
        self.maxl = maxl
        self.packets: list[KermitPacket] = []

    def __call__(self, data: bytes) -> bytes:
        packet = KermitPacket.from_bytes(data)
        self.packets.append(packet)
        reply_data = b""
        if packet.type is PacketType.SEND_INIT:
            reply_data = SendInitParams(maxl=self.maxl, time=5, qbin=" ").to_data()
        return KermitPacket(packet.seq, PacketType.ACK, reply_data).to_bytes()

    @property
    def types(self) -> str:
        return "".join(p.type.value for p in self.packets)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def fast_settings() -> LinkSettings:
    """Settings with no sleeps, for tests."""
    return LinkSettings(
        read_timeout=0.01,
        handshake_interval=0.01,
        command_delay=0.0,
        receive_delay=0.0,
    )


@pytest.fixture
def sample_data() -> bytes:
    """1776 printable bytes: 1 STX + 6 SOH XModem frames, 28 Kermit data packets."""
    return b"ABCDEFGH" * 222
