"""
hplink - File Transfer for HP RPL Calculators
=============================================

Moves files between a computer and HP 48/49/50-series calculators over
a serial link, and inspects the binary objects it moves.

Main Components
---------------
- **comms**: XModem (direct and server), Kermit send, serial ports
- **rplobj**: checksum, size and ROM revision of binary objects
- **config**: timing and retry settings
- **cli**: the `hplink` command

Quick Start
-----------
    $ hplink -p /dev/ttyUSB0 xsend GAME        # to XSERV
    $ hplink xget -d GAME                      # from XSEND
    $ hplink ksend GAME                        # to the Kermit server
    $ hplink info GAME                         # checksum and size

    from hplink import analyze_file
    print(analyze_file("GAME").summary())
"""

__version__ = "0.3.0"

from hplink.config import DEFAULT_SETTINGS, LinkSettings
from hplink.errors import (
    CancelledError,
    ChecksumError,
    CommsError,
    CRCError,
    FrameRetryExceededError,
    HandshakeTimeoutError,
    HPLinkError,
    LinkIOError,
    ObjectError,
    ObjectFormatError,
    ProtocolError,
    RetryExceededError,
    TimeoutError,
    TransferError,
    UnsupportedObjectFormatError,
    UnsupportedOperationError,
)
from hplink.rplobj import ObjectInfo, analyze_file, analyze_object

__all__ = [
    "__version__",
    "DEFAULT_SETTINGS",
    "LinkSettings",
    "HPLinkError",
    "CommsError",
    "LinkIOError",
    "TimeoutError",
    "HandshakeTimeoutError",
    "ProtocolError",
    "TransferError",
    "ChecksumError",
    "CRCError",
    "RetryExceededError",
    "FrameRetryExceededError",
    "CancelledError",
    "ObjectError",
    "ObjectFormatError",
    "UnsupportedObjectFormatError",
    "UnsupportedOperationError",
    "ObjectInfo",
    "analyze_object",
    "analyze_file",
]
