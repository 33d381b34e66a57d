"""
hplink Command-Line Interface
=============================

The `hplink` command: XModem and Kermit transfers, XModem server
commands and object inspection.
"""

from hplink.cli.hplink import main

__all__ = ["main"]
