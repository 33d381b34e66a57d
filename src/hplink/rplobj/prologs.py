"""
RPL Object Prologs
==================

Every RPL object starts with a 5-nibble prolog: the address of the ROM
routine that interprets it. The prolog therefore identifies the object's
type, and with it the rule for finding the object's length.

Size Rules
----------
FIXED       Atoms with a constant size (reals, system binaries, ...).
SIZE_FIELD  The prolog is followed by a 5-nibble size that counts
            itself and the body, but not the prolog.
ASCIC       A 2-nibble character count and that many characters
            (identifiers, local names). Tagged objects add the tagged
            object after the tag.
COMPOSITE   A sequence of objects and 5-nibble pointers ended by SEMI.
DIRECTORY   Attached-library count, offset, then linked named entries.

All sizes are in nibbles and include the prolog.
"""

from enum import Enum
from typing import Final


# =============================================================================
# Prolog Addresses
# =============================================================================

DOBINT: Final[int] = 0x02911
DOREAL: Final[int] = 0x02933
DOEREL: Final[int] = 0x02955
DOCMP: Final[int] = 0x02977
DOECMP: Final[int] = 0x0299D
DOCHAR: Final[int] = 0x029BF
DOROMP: Final[int] = 0x029E2
DOARRY: Final[int] = 0x029E8
DOLNKARRY: Final[int] = 0x02A0A
DOCSTR: Final[int] = 0x02A2C
DOHSTR: Final[int] = 0x02A4E
DOLIST: Final[int] = 0x02A74
DORRP: Final[int] = 0x02A96
DOSYMB: Final[int] = 0x02AB8
DOEXT: Final[int] = 0x02ADA
DOTAG: Final[int] = 0x02AFC
DOGROB: Final[int] = 0x02B1E
DOLIB: Final[int] = 0x02B40
DOBAK: Final[int] = 0x02B62
DOEXT0: Final[int] = 0x02B88
DOCOL: Final[int] = 0x02D9D
DOCODE: Final[int] = 0x02DCC
DOIDNT: Final[int] = 0x02E48
DOLAM: Final[int] = 0x02E6D

# End of a composite object
SEMI: Final[int] = 0x0312B


class SizeRule(Enum):
    FIXED = "fixed"
    SIZE_FIELD = "size field"
    ASCIC = "ascic"
    COMPOSITE = "composite"
    DIRECTORY = "directory"


# Total sizes of fixed-size atoms
FIXED_SIZES: Final[dict[int, int]] = {
    DOBINT: 10,
    DOREAL: 21,
    DOEREL: 26,
    DOCMP: 37,
    DOECMP: 47,
    DOCHAR: 7,
    DOROMP: 11,
}

SIZE_RULES: Final[dict[int, SizeRule]] = {
    **{prolog: SizeRule.FIXED for prolog in FIXED_SIZES},
    **{prolog: SizeRule.SIZE_FIELD for prolog in (
        DOARRY, DOLNKARRY, DOCSTR, DOHSTR, DOGROB, DOLIB, DOBAK, DOEXT0, DOCODE,
    )},
    DOIDNT: SizeRule.ASCIC,
    DOLAM: SizeRule.ASCIC,
    DOTAG: SizeRule.ASCIC,
    DOLIST: SizeRule.COMPOSITE,
    DOSYMB: SizeRule.COMPOSITE,
    DOEXT: SizeRule.COMPOSITE,
    DOCOL: SizeRule.COMPOSITE,
    DORRP: SizeRule.DIRECTORY,
}

# Names as the calculator's TYPE documentation describes them
PROLOG_NAMES: Final[dict[int, str]] = {
    DOBINT: "System Binary",
    DOREAL: "Real",
    DOEREL: "Long Real",
    DOCMP: "Complex",
    DOECMP: "Long Complex",
    DOCHAR: "Character",
    DOROMP: "XLIB Name",
    DOARRY: "Array",
    DOLNKARRY: "Linked Array",
    DOCSTR: "String",
    DOHSTR: "Binary Int",
    DOLIST: "List",
    DORRP: "Directory",
    DOSYMB: "Algebraic",
    DOEXT: "Unit",
    DOTAG: "Tagged",
    DOGROB: "Graphic",
    DOLIB: "Library",
    DOBAK: "Backup",
    DOEXT0: "Library Data",
    DOCOL: "Program",
    DOCODE: "Code",
    DOIDNT: "Global Name",
    DOLAM: "Local Name",
}


def prolog_name(prolog: int) -> str:
    """Type name for prolog, or its address if unknown."""
    return PROLOG_NAMES.get(prolog, f"#{prolog:05X}h")
