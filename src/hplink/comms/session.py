"""
Transfer Sessions and Outcomes
==============================

A TransferSession is the mutable state of one transfer: where the state
machine is, the current sequence number, block size, checksum mode,
retry counter and the bytes moved so far. It is created by the transport
that drives it and discarded when the transfer concludes.

At the transport's public boundary the session is frozen into a
TransferResult. Callers inspect the result (or call raise_on_failure())
rather than catching exceptions from deep inside the protocol engine.

State Machines
--------------
XModem:  IDLE → HANDSHAKING → TRANSFERRING → {COMPLETED, CANCELLED, FAILED}

Kermit:  IDLE → NEGOTIATING → SENDING_HEADER → SENDING_DATA →
         SENDING_EOF → CLOSING → {COMPLETED, FAILED}
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from hplink.errors import CancelledError, CommsError, RetryExceededError

# Configure module logger
logger = logging.getLogger(__name__)


# Type alias for progress callback: (bytes_done, total_bytes) -> None
ProgressCallback = Callable[[int, int], None]


# =============================================================================
# Enumerations
# =============================================================================

class TransferState(Enum):
    """States shared by the XModem and Kermit state machines."""

    IDLE = "idle"

    # XModem
    HANDSHAKING = "handshaking"
    TRANSFERRING = "transferring"

    # Kermit
    NEGOTIATING = "negotiating"
    SENDING_HEADER = "sending header"
    SENDING_DATA = "sending data"
    SENDING_EOF = "sending eof"
    CLOSING = "closing"

    # Terminal
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TransferState.COMPLETED, TransferState.CANCELLED, TransferState.FAILED)


class ChecksumMode(Enum):
    """Frame trailer format, fixed for a session at handshake."""

    CHECKSUM = "checksum"   # one-byte additive checksum (classic XModem)
    CRC = "crc"             # two-byte Conn4x CRC

    @property
    def trailer_size(self) -> int:
        return 1 if self is ChecksumMode.CHECKSUM else 2


# =============================================================================
# Result
# =============================================================================

@dataclass(frozen=True)
class TransferResult:
    """
    Final outcome of one transfer.

    Attributes:
        state: Terminal state (COMPLETED, CANCELLED or FAILED).
        data: Reconstructed file for receives; empty for sends.
        bytes_transferred: Payload bytes acknowledged before the end.
        last_sequence: Last sequence number acknowledged (None if none).
        units: Frames or packets acknowledged.
        error: The error that ended the session, if it did not complete.
    """

    state: TransferState
    data: bytes = b""
    bytes_transferred: int = 0
    last_sequence: Optional[int] = None
    units: int = 0
    error: Optional[CommsError] = None

    @classmethod
    def failure(cls, error: CommsError) -> "TransferResult":
        """Result for a transfer that failed before any data moved."""
        state = (
            TransferState.CANCELLED if isinstance(error, CancelledError)
            else TransferState.FAILED
        )
        return cls(state=state, error=error)

    @property
    def ok(self) -> bool:
        """Return True if the transfer completed."""
        return self.state is TransferState.COMPLETED

    def describe(self) -> str:
        """One-line, human-readable summary of the outcome."""
        if self.ok:
            return f"Transfer complete: {self.bytes_transferred} bytes in {self.units} blocks"
        seq = "none" if self.last_sequence is None else str(self.last_sequence)
        return (
            f"Transfer {self.state.value}: {self.error} "
            f"(last sequence acknowledged: {seq}, {self.bytes_transferred} bytes transferred)"
        )

    def raise_on_failure(self) -> "TransferResult":
        """
        Re-raise the error that ended an unsuccessful transfer.

        Returns:
            self, so calls can be chained.
        """
        if not self.ok:
            if self.error is not None:
                raise self.error
            raise CommsError(self.describe())
        return self


# =============================================================================
# Session
# =============================================================================

@dataclass
class TransferSession:
    """
    Mutable state of one transfer.

    Transitions are explicit method calls; retry exhaustion raises from
    record_retry() so it can be tested directly rather than being an
    implicit loop exit.

    Attributes:
        max_retries: Retries allowed per frame/packet before failing.
        state: Current state.
        sequence: Sequence number of the frame/packet in flight.
        block_size: XModem block size (128 or 1024).
        mode: XModem trailer mode, decided at handshake.
        retries: Retries spent on the current frame/packet.
        bytes_transferred: Payload bytes acknowledged so far.
        units: Frames/packets acknowledged so far.
        last_acked: Sequence number of the last acknowledged unit.
        started_at: time.monotonic() when the session was created.
    """

    max_retries: int
    state: TransferState = TransferState.IDLE
    sequence: int = 0
    block_size: int = 128
    mode: Optional[ChecksumMode] = None
    retries: int = 0
    bytes_transferred: int = 0
    units: int = 0
    last_acked: Optional[int] = None
    error: Optional[CommsError] = None
    started_at: float = field(default_factory=time.monotonic)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at

    def enter(self, state: TransferState) -> None:
        """Move to a non-terminal state."""
        if self.state.is_terminal:
            raise RuntimeError(f"Session already {self.state.value}")
        logger.debug("Session %s -> %s", self.state.value, state.value)
        self.state = state
        self.retries = 0

    def record_retry(self, reason: str, error_class: type = RetryExceededError) -> None:
        """
        Count one retry of the unit in flight.

        Raises:
            RetryExceededError (or error_class): When retries exceed
                max_retries.
        """
        self.retries += 1
        logger.warning(
            "Retry %d/%d for sequence %d: %s",
            self.retries, self.max_retries, self.sequence, reason
        )
        if self.retries > self.max_retries:
            raise error_class(
                f"Sequence {self.sequence} failed after {self.retries} attempts ({reason})",
                sequence=self.sequence,
            )

    def acknowledge(self, nbytes: int, next_sequence: int) -> None:
        """Record an acknowledged unit and move to the next sequence."""
        self.last_acked = self.sequence
        self.bytes_transferred += nbytes
        self.units += 1
        self.sequence = next_sequence
        self.retries = 0

    def complete(self) -> None:
        logger.debug("Session completed after %.1fs", self.elapsed)
        self.state = TransferState.COMPLETED

    def fail(self, error: CommsError) -> None:
        """Record a terminal error."""
        self.error = error
        self.state = (
            TransferState.CANCELLED if isinstance(error, CancelledError)
            else TransferState.FAILED
        )
        logger.debug("Session %s: %s", self.state.value, error)

    def result(self, data: bytes = b"") -> TransferResult:
        """Freeze the session into a TransferResult."""
        return TransferResult(
            state=self.state,
            data=data if self.state is TransferState.COMPLETED else b"",
            bytes_transferred=self.bytes_transferred,
            last_sequence=self.last_acked,
            units=self.units,
            error=self.error,
        )
