"""
HP Calculator Communication Module
==================================

File transfer between a host and HP RPL calculators over a serial link.

Module Structure
----------------
- **crc**: byte-sum checksum and the Conn4x CRC
- **packet**: the XModem server's length/payload/checksum envelope
- **channel**: the duplex byte channel every transport talks through
- **session**: transfer state, retry bookkeeping and outcomes
- **xmodem**: XModem send/receive (classic checksum and Conn4x CRC)
- **server**: the calculator's XModem server commands (M E Q P G V L o)
- **kermit**: Kermit send
- **serial**: port enumeration and configuration

Quick Start
-----------
**Sending a file to the XModem server** (XSERV running on the calculator):

    from hplink.comms import SerialChannel, XModemServer, open_serial_port

    port = open_serial_port('/dev/ttyUSB0', baud_rate=9600)
    server = XModemServer(SerialChannel(port))
    result = server.put("GAME", data)
    print(result.describe())
    port.close()

**Receiving from XSEND** (direct mode):

    result = receive_direct(SerialChannel(port))
    if result.ok:
        Path("GAME").write_bytes(result.data)

**Sending to a Kermit server**:

    result = KermitSender(SerialChannel(port)).send("GAME", data)

Error Handling
--------------
Transfers return a TransferResult; result.raise_on_failure() re-raises
the error that ended the session. Errors inherit from `CommsError` and
are defined in `hplink.errors`.

Thread Safety
-------------
A channel belongs to one transport at a time. Nothing here is
thread-safe.
"""

# =============================================================================
# Public API Exports
# =============================================================================

# Checksums
from hplink.comms.crc import (
    CRC_TABLE,
    REFERENCE_CRC_VALUES,
    checksum,
    crc16,
    crc16_nibbles,
    crc_from_bytes,
    crc_to_bytes,
    verify_crc,
)

# Command packets
from hplink.comms.packet import (
    CommandPacket,
    decode_packet,
    encode_packet,
    read_packet,
)

# Channels
from hplink.comms.channel import ByteChannel, SerialChannel

# Sessions
from hplink.comms.session import (
    ChecksumMode,
    ProgressCallback,
    TransferResult,
    TransferSession,
    TransferState,
)

# XModem
from hplink.comms.xmodem import (
    BLOCK_SIZE,
    BLOCK_SIZE_1K,
    XModemFrame,
    XModemReceiver,
    XModemSender,
    build_frames,
    send_cancel,
)

# XModem server
from hplink.comms.server import (
    DirectoryEntry,
    ServerCommand,
    XModemServer,
    decode_directory,
    encode_directory,
    receive_direct,
    send_direct,
)

# Kermit
from hplink.comms.kermit import (
    KermitPacket,
    KermitSender,
    PacketType,
    SendInitParams,
)

# Serial ports
from hplink.comms.serial import (
    DEFAULT_BAUD_RATE,
    VALID_BAUD_RATES,
    PortInfo,
    close_serial_port,
    find_calculator_port,
    format_port_list,
    list_serial_ports,
    open_serial_port,
)

__all__ = [
    # Checksums
    "CRC_TABLE",
    "REFERENCE_CRC_VALUES",
    "checksum",
    "crc16",
    "crc16_nibbles",
    "crc_from_bytes",
    "crc_to_bytes",
    "verify_crc",
    # Command packets
    "CommandPacket",
    "decode_packet",
    "encode_packet",
    "read_packet",
    # Channels
    "ByteChannel",
    "SerialChannel",
    # Sessions
    "ChecksumMode",
    "ProgressCallback",
    "TransferResult",
    "TransferSession",
    "TransferState",
    # XModem
    "BLOCK_SIZE",
    "BLOCK_SIZE_1K",
    "XModemFrame",
    "XModemReceiver",
    "XModemSender",
    "build_frames",
    "send_cancel",
    # XModem server
    "DirectoryEntry",
    "ServerCommand",
    "XModemServer",
    "decode_directory",
    "encode_directory",
    "receive_direct",
    "send_direct",
    # Kermit
    "KermitPacket",
    "KermitSender",
    "PacketType",
    "SendInitParams",
    # Serial ports
    "DEFAULT_BAUD_RATE",
    "VALID_BAUD_RATES",
    "PortInfo",
    "close_serial_port",
    "find_calculator_port",
    "format_port_list",
    "list_serial_ports",
    "open_serial_port",
]
