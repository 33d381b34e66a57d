"""
Binary Object Analyzer
======================

Reports what the calculator's BYTES command would say about a binary
object file: its checksum and size, plus the ROM revision that wrote it.

File Layout
-----------
    "HPHP48-" <rev> <object nibbles, low nibble of each byte first>

The object occupies a whole number of nibbles. When that number is odd
the calculator pads the file with one nibble, so the object's size has
to be worked out from its structure (see hplink.rplobj.prologs) rather
than from the file size. The checksum is the Conn4x CRC over exactly the
object's nibbles.

HP 49-series files ("HPHP49-") are rejected: their checksums do not
follow the HP 48 algorithm, and a wrong checksum is worse than none.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Union

from hplink.comms.crc import crc16_nibbles
from hplink.errors import ObjectFormatError, UnsupportedObjectFormatError
from hplink.rplobj.prologs import (
    DOTAG,
    FIXED_SIZES,
    SEMI,
    SIZE_RULES,
    SizeRule,
    prolog_name,
)

# Configure module logger
logger = logging.getLogger(__name__)


HEADER_SIZE: Final[int] = 8
HP48_MAGIC: Final[bytes] = b"HPHP48-"
HP49_MAGIC: Final[bytes] = b"HPHP49"

# Prolog, attached-library count and offset before the first entry
_DIRECTORY_HEADER: Final[int] = 5 + 3 + 5

# Link, empty ASCIX name: the least a directory entry can occupy
_MIN_DIRECTORY_ENTRY: Final[int] = 5 + 2 + 2


@dataclass(frozen=True)
class ObjectInfo:
    """
    Summary of one binary object.

    Attributes:
        rom_revision: ROM revision letter from the file header.
        object_crc: Conn4x CRC of the object's nibbles.
        object_length_bytes: Object size in bytes (nibbles / 2, so it
            ends in .5 for odd-sized objects).
        prolog: The object's prolog address.
        nibbles: Object size in nibbles.
    """

    rom_revision: str
    object_crc: int
    object_length_bytes: float
    prolog: int
    nibbles: int

    @property
    def type_name(self) -> str:
        return prolog_name(self.prolog)

    @property
    def crc_text(self) -> str:
        """Checksum formatted the way the calculator displays it."""
        return f"#{self.object_crc:X}h"

    def summary(self) -> str:
        return (
            f"ROM revision: {self.rom_revision}\n"
            f"Object type:  {self.type_name}\n"
            f"Checksum:     {self.crc_text}\n"
            f"Size:         {self.object_length_bytes} bytes"
        )


# =============================================================================
# Nibble Helpers
# =============================================================================

def to_nibbles(data: bytes) -> list[int]:
    """Split bytes into nibbles, low nibble first."""
    nibbles = []
    for byte in data:
        nibbles.append(byte & 0x0F)
        nibbles.append(byte >> 4)
    return nibbles


def read_field(nibbles: list[int], pos: int, count: int) -> int:
    """
    Read a count-nibble little-endian field.

    Raises:
        ObjectFormatError: If the field runs past the end of the data.
    """
    if pos + count > len(nibbles):
        raise ObjectFormatError(f"Object truncated at nibble {pos}")
    value = 0
    for i in reversed(range(count)):
        value = (value << 4) | nibbles[pos + i]
    return value


# =============================================================================
# Object Size
# =============================================================================

def object_size(nibbles: list[int], pos: int = 0) -> int:
    """
    Size in nibbles of the object starting at pos.

    Raises:
        UnsupportedObjectFormatError: If the prolog is unknown.
        ObjectFormatError: If the object is truncated.
    """
    prolog = read_field(nibbles, pos, 5)
    rule = SIZE_RULES.get(prolog)
    if rule is None:
        raise UnsupportedObjectFormatError(f"Unsupported object prolog #{prolog:05X}h")

    if rule is SizeRule.FIXED:
        size = FIXED_SIZES[prolog]

    elif rule is SizeRule.SIZE_FIELD:
        size = 5 + read_field(nibbles, pos + 5, 5)

    elif rule is SizeRule.ASCIC:
        size = 5 + 2 + 2 * read_field(nibbles, pos + 5, 2)
        if prolog == DOTAG:
            size += object_size(nibbles, pos + size)

    elif rule is SizeRule.COMPOSITE:
        cursor = pos + 5
        while True:
            word = read_field(nibbles, cursor, 5)
            if word == SEMI:
                cursor += 5
                break
            if word in SIZE_RULES:
                cursor += object_size(nibbles, cursor)
            else:
                # pointer to an object elsewhere
                cursor += 5
        size = cursor - pos

    else:
        cursor = pos + _DIRECTORY_HEADER
        while len(nibbles) - cursor >= _MIN_DIRECTORY_ENTRY:
            cursor += 5
            name_len = read_field(nibbles, cursor, 2)
            cursor += 2 + 2 * name_len + 2
            cursor += object_size(nibbles, cursor)
        size = cursor - pos

    if pos + size > len(nibbles):
        raise ObjectFormatError(
            f"Object needs {size} nibbles at {pos}, only {len(nibbles) - pos} present"
        )
    return size


# =============================================================================
# Public API
# =============================================================================

def analyze_object(data: bytes) -> ObjectInfo:
    """
    Analyze a binary object file's contents.

    Args:
        data: Complete file contents, header included.

    Returns:
        ObjectInfo for the object.

    Raises:
        UnsupportedObjectFormatError: For HP 49-series files and unknown
            object types.
        ObjectFormatError: If data is not an HP 48 binary object.

    Example:
        >>> info = analyze_object(b"HPHP48-R" + bytes.fromhex("2c2a70000041"))
        >>> info.type_name, info.object_length_bytes
        ('String', 6.0)
    """
    if data.startswith(HP49_MAGIC):
        raise UnsupportedObjectFormatError(
            "HP 49-series objects are not supported; their checksums differ"
        )
    if not data.startswith(HP48_MAGIC) or len(data) < HEADER_SIZE:
        raise ObjectFormatError("Not an HP 48 binary object (missing HPHP48 header)")

    rom_revision = chr(data[HEADER_SIZE - 1])
    nibbles = to_nibbles(data[HEADER_SIZE:])
    size = object_size(nibbles)
    crc = crc16_nibbles(nibbles[:size])

    logger.debug("Object: prolog #%05Xh, %d nibbles, crc #%04Xh",
                 read_field(nibbles, 0, 5), size, crc)

    return ObjectInfo(
        rom_revision=rom_revision,
        object_crc=crc,
        object_length_bytes=size / 2,
        prolog=read_field(nibbles, 0, 5),
        nibbles=size,
    )


def analyze_file(path: Union[str, Path]) -> ObjectInfo:
    """Read path and analyze its contents."""
    return analyze_object(Path(path).read_bytes())
