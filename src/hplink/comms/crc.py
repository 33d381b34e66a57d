"""
Checksums for the Calculator Transfer Protocols
===============================================

This module implements the two integrity checks used on the wire:

- **checksum**: plain 8-bit sum of the bytes, used by classic XModem
  frames and by the XModem server's command packets.
- **crc16**: the 16-bit CRC used by Conn4x and the calculator's XModem
  server ("Conn4x CRC"). The same fold is used by the calculator to
  checksum objects, one nibble at a time.

Technical Details
-----------------
The Conn4x CRC processes data in 4-bit nibbles, low nibble first. A
256-entry table is indexed by (low nibble of the accumulator) * 16 +
(input nibble):

    table[crc * 16 + inp] = (crc XOR inp) * 0x1081

and each nibble is folded in as:

    acc = (acc >> 4) XOR table[(acc & 0xF) * 16 + nibble]

This is the reflected CCITT polynomial (0x8408) worked a nibble at a
time, so over whole bytes it agrees with CRC-16/KERMIT:

    crc16(b"123456789") == 0x2189

Usage
-----
    from hplink.comms.crc import checksum, crc16

    checksum(b"HELLO")           # 0x74
    crc16(bytes([0x01]))         # 0x1189
"""

from typing import Final, Iterable

# =============================================================================
# Constants
# =============================================================================

# Initial accumulator value
CRC_INITIAL: Final[int] = 0x0000

# Mask for 16-bit values
CRC_MASK: Final[int] = 0xFFFF

# Multiplier of the nibble table (reflected 0x1021 spread over a nibble)
_NIBBLE_FACTOR: Final[int] = 0x1081


# =============================================================================
# Lookup Table Generation
# =============================================================================

def _generate_crc_table() -> tuple[int, ...]:
    """
    Generate the 256-entry Conn4x lookup table.

    Entry crc * 16 + inp holds (crc XOR inp) * 0x1081. Only the XOR of
    the two nibbles matters, so each row is a permutation of the same
    sixteen values.

    Returns:
        Tuple of 256 16-bit table values.
    """
    return tuple(
        ((crc ^ inp) * _NIBBLE_FACTOR) & CRC_MASK
        for crc in range(16)
        for inp in range(16)
    )


# Pre-computed table, generated once at import time and shared by every
# transfer session.
CRC_TABLE: Final[tuple[int, ...]] = _generate_crc_table()


# =============================================================================
# Checksum
# =============================================================================

def checksum(data: bytes) -> int:
    """
    Calculate the 8-bit additive checksum of data.

    Args:
        data: Bytes to sum.

    Returns:
        Sum of all byte values modulo 256.

    Example:
        >>> checksum(b"\\xff\\x02")
        1
    """
    return sum(data) & 0xFF


# =============================================================================
# Conn4x CRC
# =============================================================================

def _fold_nibble(crc: int, nibble: int) -> int:
    return (crc >> 4) ^ CRC_TABLE[((crc & 0x0F) << 4) | (nibble & 0x0F)]


def crc16(data: bytes, initial: int = CRC_INITIAL) -> int:
    """
    Calculate the Conn4x CRC over whole bytes.

    Each byte is split into two nibbles, low nibble first, and folded
    into the accumulator through CRC_TABLE.

    Args:
        data: Input bytes.
        initial: Starting accumulator. Passing the result of a previous
                 call continues the calculation over concatenated data.

    Returns:
        16-bit CRC value (0x0000 to 0xFFFF).

    Example:
        >>> hex(crc16(b"123456789"))
        '0x2189'
    """
    crc = initial
    for byte in data:
        crc = _fold_nibble(crc, byte & 0x0F)
        crc = _fold_nibble(crc, byte >> 4)
    return crc


def crc16_nibbles(nibbles: Iterable[int], initial: int = CRC_INITIAL) -> int:
    """
    Calculate the Conn4x CRC over a sequence of nibbles.

    Calculator objects are measured in nibbles and may end half-way
    through a byte, so the object analyzer needs the fold without the
    byte framing. For an even-length sequence split from bytes (low
    nibble first) the result equals crc16() of those bytes.

    Args:
        nibbles: Values 0-15, in memory order.
        initial: Starting accumulator.

    Returns:
        16-bit CRC value.
    """
    crc = initial
    for nibble in nibbles:
        crc = _fold_nibble(crc, nibble)
    return crc


# =============================================================================
# Utility Functions
# =============================================================================

def crc_to_bytes(crc: int) -> bytes:
    """
    Convert a CRC value to big-endian bytes for transmission.

    XModem frames carry the CRC trailer high byte first.

    Example:
        >>> crc_to_bytes(0x44AB)
        b'D\\xab'
    """
    return bytes([(crc >> 8) & 0xFF, crc & 0xFF])


def crc_from_bytes(data: bytes) -> int:
    """
    Convert big-endian bytes to a CRC value.

    Raises:
        ValueError: If data is less than 2 bytes.
    """
    if len(data) < 2:
        raise ValueError(f"CRC requires 2 bytes, got {len(data)}")
    return (data[0] << 8) | data[1]


def verify_crc(data: bytes, expected_crc: int) -> bool:
    """Return True if crc16(data) equals expected_crc."""
    return crc16(data) == expected_crc


# =============================================================================
# Reference Values for Testing
# =============================================================================

# Known Conn4x CRC values (input -> CRC)
REFERENCE_CRC_VALUES: Final[dict[bytes, int]] = {
    b"": 0x0000,
    b"\x01": 0x1189,
    b"123456789": 0x2189,
}
