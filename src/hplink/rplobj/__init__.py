"""
RPL Object Inspection
=====================

Checksum, size and ROM revision of HP 48 binary object files.

    from hplink.rplobj import analyze_file

    info = analyze_file("GAME")
    print(info.crc_text, info.object_length_bytes)
"""

from hplink.rplobj.analyzer import (
    ObjectInfo,
    analyze_file,
    analyze_object,
    object_size,
    to_nibbles,
)
from hplink.rplobj.prologs import PROLOG_NAMES, SizeRule, prolog_name

__all__ = [
    "ObjectInfo",
    "analyze_object",
    "analyze_file",
    "object_size",
    "to_nibbles",
    "PROLOG_NAMES",
    "SizeRule",
    "prolog_name",
]
