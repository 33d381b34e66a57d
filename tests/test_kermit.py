"""
Tests for the Kermit Sender
===========================

Test Categories
---------------
1. Helper Tests: tochar/unchar/ctl, block check, sequence numbers
2. Packet Tests: layout, parsing, Send-Init parameters
3. Quoting Tests: control prefixing and packet splitting
4. Sender Tests: the S F D... Z B [G] conversation
"""

import pytest

from hplink.comms.kermit import (
    CR,
    MARK,
    KermitPacket,
    KermitSender,
    PacketType,
    SendInitParams,
    block_check_1,
    ctl,
    decode_data,
    encode_data,
    next_sequence,
    packetize,
    tochar,
    unchar,
)
from hplink.comms.session import ChecksumMode, TransferState
from hplink.comms.xmodem import build_frames
from hplink.comms.server import receive_direct
from hplink.errors import (
    ChecksumError,
    ProtocolError,
    RetryExceededError,
    TransferError,
    UnsupportedOperationError,
)
from hplink.rplobj import analyze_object
from hplink.rplobj.prologs import DOCSTR

from conftest import KermitReceiverPeer, ScriptedChannel, XModemSenderPeer


def received_file(peer: KermitReceiverPeer) -> bytes:
    """File contents as the calculator would store them."""
    data = b"".join(p.data for p in peer.packets if p.type is PacketType.DATA)
    return decode_data(data)


def oversized_ack(seq: int) -> bytes:
    """An ACK with a correct block check but a LEN of 95."""
    fields = bytes([tochar(95), tochar(seq), ord("Y")]) + b"A" * 92
    return bytes([MARK]) + fields + bytes([block_check_1(fields), CR])


# =============================================================================
# Helper Tests
# =============================================================================

class TestHelpers:
    """Tests for the character helpers."""

    def test_tochar_unchar(self):
        assert tochar(0) == ord(" ")
        assert tochar(94) == ord("~")
        for value in range(95):
            assert unchar(tochar(value)) == value

    def test_ctl_is_involution(self):
        assert ctl(0x0D) == ord("M")
        assert ctl(ord("M")) == 0x0D
        for char in range(256):
            assert ctl(ctl(char)) == char

    def test_block_check(self):
        fields = bytes([tochar(3), tochar(0), ord("B")])
        assert block_check_1(fields) == ord("'")

    def test_block_check_is_printable(self):
        for s in range(0, 2000, 7):
            check = block_check_1(bytes([s % 256]) * (s // 256 + 1))
            assert 32 <= check <= 95

    def test_sequence_wraps_at_64(self):
        assert next_sequence(0) == 1
        assert next_sequence(62) == 63
        assert next_sequence(63) == 0


# =============================================================================
# Packet Tests
# =============================================================================

class TestKermitPacket:
    """Tests for packet encoding and parsing."""

    def test_break_packet_bytes(self):
        assert KermitPacket(0, PacketType.BREAK).to_bytes() == b"\x01# B'\r"

    def test_layout(self):
        wire = KermitPacket(5, PacketType.DATA, b"HELLO").to_bytes()
        assert wire[0] == MARK
        assert unchar(wire[1]) == 8
        assert unchar(wire[2]) == 5
        assert wire[3:4] == b"D"
        assert wire[4:9] == b"HELLO"
        assert wire[9] == block_check_1(wire[1:9])
        assert wire[-1] == CR

    def test_custom_eol(self):
        assert KermitPacket(0, PacketType.EOF).to_bytes(eol=0x0A)[-1] == 0x0A

    def test_parse(self):
        packet = KermitPacket(17, PacketType.ACK, b"~* @-#Y1")
        assert KermitPacket.from_bytes(packet.to_bytes()) == packet

    def test_parse_bad_check(self):
        wire = bytearray(KermitPacket(1, PacketType.ACK).to_bytes())
        wire[4] ^= 0x01
        with pytest.raises(ChecksumError):
            KermitPacket.from_bytes(bytes(wire))

    def test_parse_unknown_type(self):
        fields = bytes([tochar(3), tochar(0), ord("X")])
        with pytest.raises(ProtocolError):
            KermitPacket.from_bytes(bytes([MARK]) + fields + bytes([block_check_1(fields)]))

    def test_parse_missing_mark(self):
        with pytest.raises(ProtocolError):
            KermitPacket.from_bytes(b"# B'\r")

    def test_parse_truncated(self):
        with pytest.raises(ProtocolError):
            KermitPacket.from_bytes(KermitPacket(0, PacketType.DATA, b"ABC").to_bytes()[:5])

    def test_sequence_range(self):
        with pytest.raises(ValueError):
            KermitPacket(64, PacketType.DATA)

    def test_data_too_long(self):
        with pytest.raises(ValueError):
            KermitPacket(0, PacketType.DATA, bytes(92))

    def test_parse_length_over_maximum(self):
        with pytest.raises(ProtocolError, match="Invalid packet length 95"):
            KermitPacket.from_bytes(oversized_ack(0))


class TestSendInitParams:
    """Tests for Send-Init negotiation fields."""

    def test_host_parameters(self):
        assert SendInitParams().to_data() == b'~" @-#Y1'

    def test_parse(self):
        params = SendInitParams.from_data(b'~" @-#Y1')
        assert params == SendInitParams()

    def test_missing_fields_take_defaults(self):
        params = SendInitParams.from_data(b"")
        assert params.maxl == 80
        assert params.time == 5
        assert params.eol == CR
        assert params.qctl == "#"
        assert params.qbin == "N"
        assert params.chkt == "1"

    def test_blank_maxl_takes_default(self):
        assert SendInitParams.from_data(b"  ").maxl == 80

    def test_short_reply(self):
        params = SendInitParams.from_data(b"c%")
        assert params.maxl == 67
        assert params.time == 5


# =============================================================================
# Quoting Tests
# =============================================================================

class TestQuoting:
    """Tests for control-prefix quoting."""

    def test_control_and_prefix(self):
        assert encode_data(b"A\r#") == b"A#M##"

    def test_delete(self):
        assert encode_data(b"\x7f") == b"#?"

    def test_eighth_bit_kept(self):
        assert encode_data(b"\x8d") == b"#\xcd"
        assert encode_data(b"\xc1") == b"\xc1"

    def test_printable_unchanged(self):
        assert encode_data(b"HPHP48-R") == b"HPHP48-R"

    def test_all_bytes_survive(self):
        data = bytes(range(256))
        assert decode_data(encode_data(data)) == data

    def test_dangling_prefix(self):
        with pytest.raises(ProtocolError):
            decode_data(b"AB#")

    def test_packetize_keeps_pairs_together(self):
        assert packetize(b"A#M#M#M", 4) == [b"A#M", b"#M#M"]

    def test_packetize_capacity(self):
        chunks = packetize(b"x" * 200, 64)
        assert [len(c) for c in chunks] == [64, 64, 64, 8]

    def test_packetize_too_small(self):
        with pytest.raises(ValueError):
            packetize(b"#M", 1)

    def test_packetize_empty(self):
        assert packetize(b"", 64) == []


# =============================================================================
# Sender Tests
# =============================================================================

class TestKermitSender:
    """Tests for the send conversation."""

    def test_send(self, fast_settings, sample_data):
        peer = KermitReceiverPeer(maxl=67)
        channel = ScriptedChannel(on_write=peer)

        result = KermitSender(channel, fast_settings).send("GAME", sample_data)

        assert result.ok
        assert peer.types == "SF" + "D" * 28 + "ZB"
        assert [p.seq for p in peer.packets] == list(range(32))
        assert result.units == 32
        assert result.bytes_transferred == 1776
        assert received_file(peer) == sample_data

    def test_send_init_and_file_header(self, fast_settings):
        peer = KermitReceiverPeer()
        channel = ScriptedChannel(on_write=peer)

        KermitSender(channel, fast_settings).send("GAME", b"x")

        assert peer.packets[0].data == b'~" @-#Y1'
        assert peer.packets[1].type is PacketType.FILE_HEADER
        assert peer.packets[1].data == b"GAME"

    def test_data_packets_fit_peer_maxl(self, fast_settings, sample_data):
        peer = KermitReceiverPeer(maxl=40)
        channel = ScriptedChannel(on_write=peer)

        KermitSender(channel, fast_settings).send("GAME", sample_data)

        data_packets = [p for p in peer.packets if p.type is PacketType.DATA]
        assert all(p.length <= 40 for p in data_packets)

    def test_finish(self, fast_settings):
        peer = KermitReceiverPeer()
        channel = ScriptedChannel(on_write=peer)

        result = KermitSender(channel, fast_settings).send("GAME", b"x", finish=True)

        assert result.ok
        assert peer.types.endswith("ZBG")
        last = peer.packets[-1]
        assert last.seq == 0
        assert last.data == b"F"

    def test_sequence_wraps(self, fast_settings):
        peer = KermitReceiverPeer(maxl=13)
        channel = ScriptedChannel(on_write=peer)

        result = KermitSender(channel, fast_settings).send("BIG", b"abcdefghij" * 70)

        assert result.ok
        seqs = [p.seq for p in peer.packets]
        assert seqs[63] == 63
        assert seqs[64] == 0

    def test_nak_for_next_sequence_counts_as_ack(self, fast_settings):
        def peer(data):
            packet = KermitPacket.from_bytes(data)
            if packet.type is PacketType.DATA:
                return KermitPacket(next_sequence(packet.seq), PacketType.NAK).to_bytes()
            return KermitPacket(packet.seq, PacketType.ACK).to_bytes()

        channel = ScriptedChannel(on_write=peer)
        result = KermitSender(channel, fast_settings).send("GAME", b"x" * 100)

        assert result.ok
        assert len(channel.writes) == result.units

    def test_nak_is_retransmitted(self, fast_settings):
        naks = {2}
        inner = KermitReceiverPeer()

        def peer(data):
            packet = KermitPacket.from_bytes(data)
            if packet.seq in naks:
                naks.discard(packet.seq)
                return KermitPacket(packet.seq, PacketType.NAK).to_bytes()
            return inner(data)

        channel = ScriptedChannel(on_write=peer)
        result = KermitSender(channel, fast_settings).send("GAME", b"x" * 10)

        assert result.ok
        assert channel.writes[2] == channel.writes[3]

    def test_retry_exceeded(self, fast_settings):
        def peer(data):
            return KermitPacket(KermitPacket.from_bytes(data).seq, PacketType.NAK).to_bytes()

        channel = ScriptedChannel(on_write=peer)
        result = KermitSender(channel, fast_settings).send("GAME", b"x")

        assert result.state is TransferState.FAILED
        assert isinstance(result.error, RetryExceededError)
        assert len(channel.writes) == fast_settings.max_retries + 1

    def test_no_reply(self, fast_settings):
        channel = ScriptedChannel()
        result = KermitSender(channel, fast_settings).send("GAME", b"x")
        assert isinstance(result.error, RetryExceededError)

    def test_peer_packet_size_too_small(self, fast_settings):
        peer = KermitReceiverPeer(maxl=4)
        channel = ScriptedChannel(on_write=peer)

        result = KermitSender(channel, fast_settings).send("GAME", b"x")

        assert result.state is TransferState.FAILED
        assert isinstance(result.error, ProtocolError)
        assert peer.types == "S"

    def test_peer_maxl_below_printable(self, fast_settings):
        def peer(data):
            return KermitPacket(0, PacketType.ACK, b"\x1f% @-#Y1").to_bytes()

        result = KermitSender(ScriptedChannel(on_write=peer), fast_settings).send("GAME", b"x")

        assert result.state is TransferState.FAILED
        assert isinstance(result.error, ProtocolError)

    def test_oversized_reply_retried_then_fails(self, fast_settings):
        channel = ScriptedChannel(on_write=lambda data: oversized_ack(0))

        result = KermitSender(channel, fast_settings).send("GAME", b"x")

        assert result.state is TransferState.FAILED
        assert isinstance(result.error, RetryExceededError)
        assert len(channel.writes) == fast_settings.max_retries + 1

    def test_name_too_long_for_packet(self, fast_settings):
        peer = KermitReceiverPeer()
        channel = ScriptedChannel(on_write=peer)

        result = KermitSender(channel, fast_settings).send("N" * 92, b"x")

        assert result.state is TransferState.FAILED
        assert isinstance(result.error, TransferError)
        assert peer.types == "S"

    def test_error_packet(self, fast_settings):
        def peer(data):
            packet = KermitPacket.from_bytes(data)
            if packet.type is PacketType.FILE_HEADER:
                return KermitPacket(packet.seq, PacketType.ERROR, b"Insufficient Memory").to_bytes()
            return KermitPacket(packet.seq, PacketType.ACK).to_bytes()

        channel = ScriptedChannel(on_write=peer)
        result = KermitSender(channel, fast_settings).send("GAME", b"x")

        assert result.state is TransferState.FAILED
        assert isinstance(result.error, ProtocolError)
        assert "Insufficient Memory" in str(result.error)
        assert len(channel.writes) == 2

    def test_noise_before_reply_skipped(self, fast_settings):
        inner = KermitReceiverPeer()
        channel = ScriptedChannel(on_write=lambda data: b"\r\n\x00" + inner(data))
        assert KermitSender(channel, fast_settings).send("GAME", b"x").ok

    def test_progress(self, fast_settings, sample_data):
        events = []
        channel = ScriptedChannel(on_write=KermitReceiverPeer(maxl=67))

        KermitSender(channel, fast_settings, progress=lambda d, t: events.append((d, t))).send(
            "GAME", sample_data
        )

        assert len(events) == 28
        assert events[0] == (64, 1776)
        assert events[-1] == (1776, 1776)

    def test_receive_is_unsupported(self, fast_settings):
        with pytest.raises(UnsupportedOperationError):
            KermitSender(ScriptedChannel(), fast_settings).receive()


# =============================================================================
# Transport Equivalence
# =============================================================================

class TestTransportsAgree:
    """An object moved by either transport analyzes the same."""

    @pytest.fixture
    def hp_object(self) -> bytes:
        chars = (b"HP48 KERMIT " * 147)[:1763]
        size = 5 + 2 * len(chars)
        nibbles = [(DOCSTR >> (4 * i)) & 0xF for i in range(5)]
        nibbles += [(size >> (4 * i)) & 0xF for i in range(5)]
        body = bytes(nibbles[i] | (nibbles[i + 1] << 4) for i in range(0, 10, 2))
        return b"HPHP48-R" + body + chars

    def test_object_file_size(self, hp_object):
        assert len(hp_object) == 1776
        assert analyze_object(hp_object).object_length_bytes == 1768.0

    def test_xmodem_and_kermit_agree(self, fast_settings, hp_object):
        frames = build_frames(hp_object, ChecksumMode.CHECKSUM)
        xmodem = receive_direct(ScriptedChannel(on_write=XModemSenderPeer(frames)), fast_settings)

        peer = KermitReceiverPeer(maxl=67)
        kermit = KermitSender(ScriptedChannel(on_write=peer), fast_settings).send("GAME", hp_object)

        assert xmodem.ok and kermit.ok
        expected = analyze_object(hp_object)
        assert analyze_object(xmodem.data) == expected
        assert analyze_object(received_file(peer)) == expected
