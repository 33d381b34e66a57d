"""
hplink Error Hierarchy
======================

This module defines the exception hierarchy for the whole package.
All exceptions inherit from HPLinkError, allowing callers to catch all
package errors with a single except clause if desired.

Exception Hierarchy
-------------------
HPLinkError (base)
├── CommsError (serial communication)
│   ├── LinkIOError - the byte channel failed (port unplugged, write error)
│   ├── TimeoutError - no response before the read deadline
│   │   └── HandshakeTimeoutError - peer never announced a transfer mode
│   ├── ProtocolError - peer broke the protocol (bad header, wrong sequence)
│   └── TransferError - error during file transfer
│       ├── ChecksumError - checksum in a packet or frame did not match
│       │   └── CRCError - Conn4x CRC trailer did not match
│       ├── RetryExceededError - retry budget exhausted
│       │   └── FrameRetryExceededError - peer kept rejecting one frame
│       └── CancelledError - transfer cancelled by either side
├── ObjectError (calculator object inspection)
│   ├── ObjectFormatError - not an HP binary object, or truncated
│   └── UnsupportedObjectFormatError - known layout that cannot be analyzed
└── UnsupportedOperationError - operation the package deliberately lacks

Transports raise these internally and fold them into a TransferResult at
their public boundary; see hplink.comms.session.
"""

from typing import Optional


# =============================================================================
# Base Exception Class
# =============================================================================

class HPLinkError(Exception):
    """
    Base exception for all hplink errors.

        try:
            server.put("PRG", data).raise_on_failure()
        except HPLinkError as e:
            print(f"Error: {e}")
    """
    pass


# =============================================================================
# Communication Exceptions
# =============================================================================

class CommsError(HPLinkError):
    """Base exception for serial communication errors."""
    pass


class LinkIOError(CommsError):
    """
    The byte channel itself failed.

    Raised when:
    - The serial port cannot be opened
    - A write to the port fails
    - The port disappears mid-transfer

    This is never retried.
    """
    pass


class TimeoutError(CommsError):
    """
    Communication timeout error.

    Raised when a read deadline expires before the expected bytes
    arrive. Transports retry timeouts up to their retry ceiling; a
    TimeoutError that escapes a transport is final.

    Note:
        This is an hplink-specific TimeoutError, distinct from the
        Python builtin TimeoutError. It inherits from CommsError
        for consistent error handling in the comms module.
    """

    def __init__(self, message: str = "", partial: bytes = b""):
        self.partial = partial
        super().__init__(message or "Timed out waiting for data")


class HandshakeTimeoutError(TimeoutError):
    """
    The peer never sent a mode signal (NAK or C) within the attempt budget.

    No frames have been sent when this is raised.
    """
    pass


class ProtocolError(CommsError):
    """
    Link protocol error.

    Raised when the calculator sends an unexpected response, a frame
    header is malformed, or sequence numbers go out of order.
    """
    pass


class TransferError(CommsError):
    """
    Error during file transfer.

    Attributes:
        sequence: Last sequence number involved, when known.
    """

    def __init__(self, message: str = "", sequence: Optional[int] = None):
        self.sequence = sequence
        super().__init__(message)


class ChecksumError(TransferError):
    """
    Checksum verification failed.

    Raised when the checksum in a received packet or frame doesn't
    match the calculated checksum. Inside a transport this triggers a
    retransmission request; outside it means repeated failures.
    """

    def __init__(self, expected: int, actual: int, message: str = ""):
        self.expected = expected
        self.actual = actual
        if not message:
            message = f"Checksum mismatch: expected {expected:02X}, got {actual:02X}"
        super().__init__(message)


class CRCError(ChecksumError):
    """Conn4x CRC trailer of an XModem frame did not match."""

    def __init__(self, expected: int, actual: int, message: str = ""):
        if not message:
            message = f"CRC mismatch: expected {expected:04X}, got {actual:04X}"
        super().__init__(expected, actual, message)


class RetryExceededError(TransferError):
    """A bounded retry budget was exhausted. Fatal for the session."""
    pass


class FrameRetryExceededError(RetryExceededError):
    """The peer rejected the same XModem frame more times than allowed."""
    pass


class CancelledError(TransferError):
    """
    Transfer cancelled.

    Raised when the calculator sends CAN, or when the host cancels an
    in-progress send. Not a fault of either side.
    """
    pass


# =============================================================================
# Object Inspection Exceptions
# =============================================================================

class ObjectError(HPLinkError):
    """Base exception for calculator object inspection."""
    pass


class ObjectFormatError(ObjectError):
    """
    Data is not a usable HP binary object.

    Raised when the HPHP header is missing or the object runs past the
    end of the file.
    """
    pass


class UnsupportedObjectFormatError(ObjectError):
    """
    Object layout is recognized but cannot be analyzed.

    HP 49-series binaries fall in this category: their checksums differ
    from what the HP 48 algorithm yields, so no checksum is reported
    rather than a wrong one.
    """
    pass


# =============================================================================
# Operation Exceptions
# =============================================================================

class UnsupportedOperationError(HPLinkError):
    """
    Operation deliberately not implemented (e.g. Kermit receive).

    Reported immediately, never retried.
    """
    pass
