"""
Byte Channel Abstraction
========================

Every transport talks to the calculator through a minimal duplex byte
channel. The serial port is the production channel; tests substitute an
in-memory one, which lets the whole protocol engine run without
hardware.

A channel is owned exclusively by one transport for the duration of a
transfer. Reads always carry a deadline: a read that cannot be satisfied
in time raises TimeoutError instead of blocking forever.
"""

import logging
from typing import Optional, Protocol

import serial

from hplink.errors import LinkIOError, TimeoutError

# Configure module logger
logger = logging.getLogger(__name__)


class ByteChannel(Protocol):
    """Interface the transports require from the link."""

    def read(self, size: int = 1, timeout: Optional[float] = None) -> bytes:
        """
        Read exactly size bytes.

        Raises:
            TimeoutError: If fewer than size bytes arrive before timeout.
                The bytes that did arrive are on the exception's
                ``partial`` attribute.
            LinkIOError: If the channel fails.
        """
        ...

    def write(self, data: bytes) -> None:
        """
        Write all of data.

        Raises:
            LinkIOError: If the channel fails.
        """
        ...

    def reset_input(self) -> None:
        """Discard any unread input."""
        ...


class SerialChannel:
    """
    ByteChannel backed by a pyserial port.

    The port must already be open and configured (see
    hplink.comms.serial.open_serial_port). The channel adjusts the port's
    timeout for each read and restores nothing afterwards: while a
    transfer runs, the channel is the port's only user.

    Example:
        port = open_serial_port('/dev/ttyUSB0', baud_rate=9600)
        channel = SerialChannel(port, default_timeout=4.0)
        XModemSender(channel).send(data)
    """

    def __init__(self, port: serial.Serial, default_timeout: float = 4.0):
        self.port = port
        self.default_timeout = default_timeout

    def read(self, size: int = 1, timeout: Optional[float] = None) -> bytes:
        if timeout is None:
            timeout = self.default_timeout
        try:
            self.port.timeout = timeout
            data = self.port.read(size)
        except serial.SerialException as e:
            raise LinkIOError(f"Serial read failed: {e}") from e

        if len(data) < size:
            raise TimeoutError(
                f"Read {len(data)} of {size} bytes within {timeout}s",
                partial=bytes(data),
            )
        logger.debug("RX %d bytes: %s", len(data), data[:32].hex())
        return bytes(data)

    def write(self, data: bytes) -> None:
        try:
            self.port.write(data)
            self.port.flush()
        except serial.SerialException as e:
            raise LinkIOError(f"Serial write failed: {e}") from e
        logger.debug("TX %d bytes: %s", len(data), data[:32].hex())

    def reset_input(self) -> None:
        try:
            self.port.reset_input_buffer()
        except serial.SerialException as e:
            raise LinkIOError(f"Cannot reset input buffer: {e}") from e
