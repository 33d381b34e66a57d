"""
Tests for the Command Packet Codec
==================================
"""

import pytest

from hplink.comms.packet import (
    MAX_PAYLOAD_SIZE,
    CommandPacket,
    decode_packet,
    encode_packet,
    read_packet,
)
from hplink.errors import ChecksumError, ProtocolError, TimeoutError

from conftest import ScriptedChannel


class TestCommandPacket:
    """Tests for CommandPacket construction and invariants."""

    def test_from_payload(self):
        packet = CommandPacket.from_payload(b"MYPRG")
        assert packet.length == 5
        assert packet.payload == b"MYPRG"
        assert packet.checksum == 0x8F

    def test_length_mismatch_rejected(self):
        with pytest.raises(ValueError):
            CommandPacket(length=4, payload=b"MYPRG", checksum=0x8F)

    def test_checksum_mismatch_rejected(self):
        with pytest.raises(ChecksumError):
            CommandPacket(length=5, payload=b"MYPRG", checksum=0x00)

    def test_payload_too_large(self):
        with pytest.raises(ValueError):
            CommandPacket.from_payload(bytes(MAX_PAYLOAD_SIZE + 1))

    def test_payload_must_be_bytes(self):
        with pytest.raises(TypeError):
            CommandPacket(length=1, payload="A", checksum=0x41)

    def test_immutable(self):
        packet = CommandPacket.from_payload(b"A")
        with pytest.raises(AttributeError):
            packet.payload = b"B"


class TestEncode:
    """Tests for the wire encoding."""

    def test_structure(self):
        assert encode_packet(b"MYPRG") == b"\x00\x05MYPRG\x8f"

    def test_empty_payload(self):
        assert encode_packet(b"") == b"\x00\x00\x00"

    def test_length_is_big_endian(self):
        wire = encode_packet(bytes(300))
        assert wire[:2] == b"\x01\x2c"

    def test_largest_payload(self):
        wire = encode_packet(b"\x01" * MAX_PAYLOAD_SIZE)
        assert wire[:2] == b"\xff\xff"
        assert wire[-1] == MAX_PAYLOAD_SIZE & 0xFF


class TestDecode:
    """Tests for decoding and validation."""

    @pytest.mark.parametrize("size", [0, 1, 127, 256, 4096, MAX_PAYLOAD_SIZE])
    def test_roundtrip(self, size):
        payload = bytes(i & 0xFF for i in range(size))
        assert decode_packet(encode_packet(payload)).payload == payload

    def test_trailing_bytes_ignored(self):
        assert decode_packet(encode_packet(b"V1") + b"junk").payload == b"V1"

    def test_flipped_payload_byte(self):
        wire = encode_packet(b"HPHP48-R")
        for pos in range(2, len(wire) - 1):
            damaged = bytearray(wire)
            damaged[pos] ^= 0x01
            with pytest.raises(ChecksumError):
                decode_packet(bytes(damaged))

    def test_flipped_checksum(self):
        wire = bytearray(encode_packet(b"MEM"))
        wire[-1] ^= 0x80
        with pytest.raises(ChecksumError):
            decode_packet(bytes(wire))

    def test_too_short(self):
        with pytest.raises(ProtocolError):
            decode_packet(b"\x00")

    def test_truncated_payload(self):
        with pytest.raises(ProtocolError):
            decode_packet(b"\x00\x05MYP")


class TestReadPacket:
    """Tests for reading packets from a channel."""

    def test_reads_exactly_one_packet(self):
        channel = ScriptedChannel(encode_packet(b"123456") + b"\x06")
        assert read_packet(channel).payload == b"123456"
        assert channel.inbound == bytearray(b"\x06")

    def test_timeout(self):
        channel = ScriptedChannel(b"\x00\x05MY")
        with pytest.raises(TimeoutError):
            read_packet(channel, timeout=0.01)

    def test_bad_checksum(self):
        channel = ScriptedChannel(b"\x00\x01A\x00")
        with pytest.raises(ChecksumError):
            read_packet(channel)
