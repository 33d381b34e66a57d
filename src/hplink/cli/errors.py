"""
CLI Error Handling
==================

Consistent error messages and exit codes for the hplink command.
"""

import sys
import traceback
from enum import IntEnum
from typing import NoReturn

import click

from hplink.errors import HPLinkError, UnsupportedOperationError


class ExitCode(IntEnum):
    """Exit codes of the hplink command."""
    SUCCESS = 0
    TRANSFER_ERROR = 1   # Link, protocol, transfer or object error
    INVALID_ARGS = 2     # Invalid arguments or missing files
    INTERNAL_ERROR = 3   # Unexpected internal error


def handle_cli_exception(error: Exception, verbose: bool = False) -> NoReturn:
    """
    Report error and exit with the matching exit code.

    Args:
        error: The exception that was raised
        verbose: If True, print the traceback of internal errors

    Raises:
        SystemExit: Always
    """
    if isinstance(error, UnsupportedOperationError):
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    elif isinstance(error, HPLinkError):
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.TRANSFER_ERROR)

    elif isinstance(error, (click.BadParameter, ValueError)):
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    elif isinstance(error, (FileNotFoundError, PermissionError, IsADirectoryError)):
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    else:
        click.echo(f"Internal error: {error}", err=True)
        if verbose:
            traceback.print_exc()
        sys.exit(ExitCode.INTERNAL_ERROR)
