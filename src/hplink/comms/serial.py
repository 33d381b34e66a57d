"""
Serial Port Utilities
=====================

Opening, enumerating and choosing the serial port that connects the host
to an HP calculator.

The calculators talk 8N1 without flow control; the transfer protocols
pace themselves. The baud rate must match the calculator's IOPAR (9600
unless changed; the HP 48 also offers 1200-4800 and the HP 49G+/50G USB
bridge accepts up to 115200).

When no port is given, HP's own USB bridge and the adapters known to
work with it are tried first, then any USB adapter, then whatever the
system lists first.
"""

import logging
from dataclasses import dataclass
from typing import Final, Optional

import serial
import serial.tools.list_ports

from hplink.errors import LinkIOError

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

VALID_BAUD_RATES: Final[tuple[int, ...]] = (
    1200, 2400, 4800, 9600, 19200, 38400, 57600, 115200
)

DEFAULT_BAUD_RATE: Final[int] = 9600

# Names shown next to USB ports, by vendor ID
KNOWN_VENDORS: Final[dict[int, str]] = {
    0x03F0: "Hewlett-Packard",
    0x0403: "FTDI",
    0x10C4: "Silicon Labs",
    0x067B: "Prolific",
    0x1A86: "QinHeng",
}

# Auto-detection order; other USB vendors rank after these
_PREFERRED_VENDORS: Final[tuple[int, ...]] = (0x03F0, 0x0403, 0x10C4)

# Substrings of pyserial's open errors, and what to tell the user
_OPEN_HINTS: Final[tuple[tuple[str, str], ...]] = (
    ("permission denied",
     "permission denied (on Linux, add yourself to the 'dialout' group)"),
    ("no such file", "no such port (try 'hplink ports')"),
    ("not found", "no such port (try 'hplink ports')"),
    ("busy", "port is busy; close other programs using it"),
    ("in use", "port is busy; close other programs using it"),
)


# =============================================================================
# Port Discovery
# =============================================================================

@dataclass(frozen=True)
class PortInfo:
    """
    A serial port as the system reports it.

    Attributes:
        device: Device path ('/dev/ttyUSB0', 'COM3', ...)
        description: Driver description, possibly empty
        vid: USB vendor ID, or None for built-in ports
    """

    device: str
    description: str = ""
    vid: Optional[int] = None

    @classmethod
    def from_listing(cls, entry) -> "PortInfo":
        """Build from a pyserial ListPortInfo."""
        return cls(device=entry.device, description=entry.description or "", vid=entry.vid)

    @property
    def is_usb(self) -> bool:
        return self.vid is not None

    @property
    def vendor_name(self) -> Optional[str]:
        return KNOWN_VENDORS.get(self.vid) if self.is_usb else None

    def __str__(self) -> str:
        text = self.device
        if self.description:
            text += f" - {self.description}"
        if self.vendor_name:
            text += f" ({self.vendor_name})"
        return text


def list_serial_ports() -> list[PortInfo]:
    """Every serial port on the system, in pyserial's order."""
    ports = [PortInfo.from_listing(entry) for entry in serial.tools.list_ports.comports()]
    logger.debug("Found %d serial port(s): %s", len(ports),
                 ", ".join(p.device for p in ports))
    return ports


def _rank(port: PortInfo) -> tuple[int, int]:
    if port.vid in _PREFERRED_VENDORS:
        return 0, _PREFERRED_VENDORS.index(port.vid)
    return (1, 0) if port.is_usb else (2, 0)


def find_calculator_port() -> Optional[str]:
    """
    Pick the port most likely to reach a calculator.

    Returns:
        Device path, or None if the system has no serial ports.
    """
    ports = list_serial_ports()
    if not ports:
        return None

    # min() keeps the first of equally ranked ports
    chosen = min(ports, key=_rank)
    logger.info("Using serial port %s", chosen)
    return chosen.device


def format_port_list(ports: list[PortInfo]) -> str:
    """Text for the 'ports' command, one port per line."""
    if not ports:
        return "No serial ports found."
    lines = ["Available serial ports:"]
    lines += [f"  {port}{' [USB]' if port.is_usb else ''}" for port in ports]
    return "\n".join(lines)


# =============================================================================
# Opening and Closing
# =============================================================================

def open_serial_port(
    device: str,
    baud_rate: int = DEFAULT_BAUD_RATE,
    timeout: float = 4.0,
) -> serial.Serial:
    """
    Open device 8N1 with no flow control and empty buffers.

    Raises:
        ValueError: If baud_rate is not in VALID_BAUD_RATES.
        LinkIOError: If the port cannot be opened.
    """
    if baud_rate not in VALID_BAUD_RATES:
        rates = ", ".join(map(str, VALID_BAUD_RATES))
        raise ValueError(f"Invalid baud rate: {baud_rate}. Valid rates: {rates}")

    logger.info("Opening %s at %d baud", device, baud_rate)
    try:
        port = serial.Serial(
            port=device,
            baudrate=baud_rate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=timeout,
            xonxoff=False,
            rtscts=False,
            dsrdtr=False,
        )
    except serial.SerialException as e:
        reason = str(e).lower()
        hint = next((text for needle, text in _OPEN_HINTS if needle in reason), str(e))
        raise LinkIOError(f"Cannot open {device}: {hint}") from e

    port.reset_input_buffer()
    port.reset_output_buffer()
    return port


def close_serial_port(port: Optional[serial.Serial]) -> None:
    """Close port if it is open; failures are logged, not raised."""
    if port is None or not port.is_open:
        return
    try:
        port.close()
    except serial.SerialException as e:
        logger.warning("Error closing %s: %s", port.port, e)
