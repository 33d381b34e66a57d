"""
hplink - Calculator File Transfer Command-Line Interface
========================================================

Transfers files between the computer and an HP RPL calculator over a
serial link, using XModem (to the XModem server or to XRECV/XSEND
directly) or Kermit (send only).

Usage Examples
--------------
List available serial ports:
    $ hplink ports

Send a file to the XModem server (XSERV on the calculator):
    $ hplink xsend GAME
    $ hplink -f xsend GAME            # and stop the server afterwards

Send to XRECV, or receive from XSEND, without the server:
    $ hplink xsend -d GAME
    $ hplink xget -d GAME

Send to the Kermit server:
    $ hplink ksend GAME

Show the checksum and size the calculator will report:
    $ hplink info GAME

Talk to the XModem server:
    $ hplink mem
    $ hplink ls
    $ hplink exec "MEM"
    $ hplink quit

Environment
-----------
HPLINK_READ_TIMEOUT, HPLINK_MAX_RETRIES and the other HPLINK_* variables
override the link timing (see hplink.config).

Exit Codes
----------
0 - Success
1 - Link, transfer or object error
2 - Invalid arguments (including a missing PATH)
3 - Internal error
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import click

from hplink import __version__
from hplink.cli.errors import ExitCode, handle_cli_exception
from hplink.comms import (
    DEFAULT_BAUD_RATE,
    VALID_BAUD_RATES,
    KermitSender,
    SerialChannel,
    TransferResult,
    XModemServer,
    close_serial_port,
    find_calculator_port,
    format_port_list,
    list_serial_ports,
    open_serial_port,
    receive_direct,
    send_direct,
)
from hplink.comms.channel import ByteChannel
from hplink.config import LinkSettings
from hplink.errors import LinkIOError, ObjectError, UnsupportedOperationError
from hplink.rplobj import analyze_file, analyze_object

# Configure logging
logger = logging.getLogger(__name__)


# =============================================================================
# CLI Context and Utilities
# =============================================================================

class Context:
    """
    Shared context for CLI commands.

    Stores the serial options, the finish flag and the link settings.
    """

    def __init__(self) -> None:
        self.port: Optional[str] = None
        self.baud: int = DEFAULT_BAUD_RATE
        self.verbose: bool = False
        self.finish: bool = False
        self.settings: LinkSettings = LinkSettings()

    def setup_logging(self) -> None:
        """Configure logging based on verbosity."""
        level = logging.DEBUG if self.verbose else logging.INFO
        logging.basicConfig(
            level=level,
            format="%(levelname)s: %(message)s" if self.verbose else "%(message)s",
        )


pass_context = click.make_pass_decorator(Context, ensure=True)


def progress_bar(current: int, total: int) -> None:
    """Text progress bar; shows a byte count when total is unknown."""
    if total == 0:
        click.echo(f"\rReceived: {current} bytes", nl=False)
        return
    percent = current * 100 // total
    filled = percent // 2
    bar = "=" * filled + "-" * (50 - filled)
    click.echo(f"\r[{bar}] {percent:3d}% ({current}/{total} bytes)", nl=False)
    if current >= total:
        click.echo()


def require_argument(value: Optional[str]) -> str:
    """Print the command's help and exit 2 when its argument was not given."""
    if value is None:
        click_ctx = click.get_current_context()
        click.echo(click_ctx.get_help())
        click_ctx.exit(ExitCode.INVALID_ARGS)
    return value


def next_free_path(path: Path) -> Path:
    """Return path, or the first of path.1, path.2, ... that does not exist."""
    if not path.exists():
        return path
    n = 1
    while True:
        candidate = path.with_name(f"{path.name}.{n}")
        if not candidate.exists():
            return candidate
        n += 1


def print_object_info(data: bytes) -> None:
    """Print the analyzer summary, or why there is none."""
    try:
        click.echo(analyze_object(data).summary())
    except ObjectError as e:
        click.echo(f"No object info: {e}")


def report(result: TransferResult) -> None:
    """Print a transfer outcome, exiting 1 on failure."""
    click.echo()
    if not result.ok:
        click.echo(result.describe(), err=True)
        raise SystemExit(ExitCode.TRANSFER_ERROR)
    click.echo(result.describe())


@contextmanager
def open_link(ctx: Context) -> Iterator[ByteChannel]:
    """Open the serial port and yield a channel on it."""
    device = ctx.port or find_calculator_port()
    if not device:
        raise LinkIOError(
            "No serial port specified and auto-detect failed. "
            "Use --port or 'hplink ports' to find available ports."
        )

    serial_port = open_serial_port(device, baud_rate=ctx.baud, timeout=ctx.settings.read_timeout)
    try:
        logger.debug("Connected on %s", device)
        yield SerialChannel(serial_port, default_timeout=ctx.settings.read_timeout)
    finally:
        close_serial_port(serial_port)


# =============================================================================
# Main CLI Group
# =============================================================================

@click.group()
@click.option(
    "-p", "--port",
    type=str,
    default=None,
    help="Serial port device (auto-detect if not specified)",
)
@click.option(
    "-b", "--baud",
    type=click.Choice([str(b) for b in VALID_BAUD_RATES]),
    default=str(DEFAULT_BAUD_RATE),
    help=f"Baud rate (default: {DEFAULT_BAUD_RATE})",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose output",
)
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Read timeout in seconds (default: 4)",
)
@click.option(
    "-f", "--finish",
    is_flag=True,
    help="Stop the calculator's server after a successful transfer",
)
@click.version_option(version=__version__, prog_name="hplink")
@pass_context
def main(
    ctx: Context,
    port: Optional[str],
    baud: str,
    verbose: bool,
    timeout: Optional[float],
    finish: bool,
) -> None:
    """
    Transfer files to and from HP RPL calculators.

    Start XSERV on the calculator for the XModem server commands, or
    XRECV/XSEND with -d for direct transfers. ksend talks to the
    calculator's Kermit server.

    Use 'hplink ports' to list available serial ports.
    """
    ctx.port = port
    ctx.baud = int(baud)
    ctx.verbose = verbose
    ctx.finish = finish
    try:
        ctx.settings = LinkSettings.from_env().with_overrides(read_timeout=timeout)
    except ValueError as e:
        raise click.BadParameter(str(e))
    ctx.setup_logging()


# =============================================================================
# Ports Command
# =============================================================================

@main.command()
def ports() -> None:
    """
    List available serial ports.

    Example:
        hplink ports
    """
    port_list = list_serial_ports()
    click.echo(format_port_list(port_list))

    if not port_list:
        click.echo("\nTips:")
        click.echo("  - Connect your USB-serial adapter or the calculator's USB cable")
        click.echo("  - On Linux, ensure you have permission (dialout group)")
        return

    auto_port = find_calculator_port()
    if auto_port:
        click.echo(f"\nSuggested port: {auto_port}")


# =============================================================================
# XModem Commands
# =============================================================================

@main.command()
@click.argument("path", type=click.Path(dir_okay=False), required=False)
@click.option(
    "-d", "--direct",
    is_flag=True,
    help="Send to XRECV instead of the XModem server (128-byte blocks)",
)
@click.option(
    "-n", "--name",
    type=str,
    default=None,
    help="Variable name on the calculator (default: file name)",
)
@pass_context
def xsend(ctx: Context, path: Optional[str], direct: bool, name: Optional[str]) -> None:
    """
    Send PATH to the calculator with XModem.

    Example:
        hplink xsend GAME
        hplink xsend -d GAME
    """
    path = require_argument(path)
    try:
        data = Path(path).read_bytes()
        if direct and ctx.finish:
            click.echo("Warning: ignoring -f (finish) in direct mode", err=True)

        with open_link(ctx) as channel:
            if direct:
                click.echo("Waiting for XRECV on the calculator...")
                result = send_direct(channel, data, ctx.settings, progress_bar)
            else:
                server = XModemServer(channel, ctx.settings)
                result = server.put(name or Path(path).name, data, progress_bar)
                if result.ok and ctx.finish:
                    server.finish()

        report(result)
        print_object_info(data)

    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose)


@main.command()
@click.argument("path", type=click.Path(dir_okay=False), required=False)
@click.option(
    "-d", "--direct",
    is_flag=True,
    help="Receive from XSEND instead of the XModem server",
)
@click.option(
    "-o", "--overwrite",
    is_flag=True,
    help="Overwrite PATH if it exists (default: save as PATH.1, PATH.2, ...)",
)
@pass_context
def xget(ctx: Context, path: Optional[str], direct: bool, overwrite: bool) -> None:
    """
    Receive a file from the calculator with XModem and save it as PATH.

    In server mode the variable named like PATH's file name is fetched.
    Nothing is written unless the transfer completes.

    Example:
        hplink xget GAME
        hplink xget -d -o GAME
    """
    path = require_argument(path)
    try:
        target = Path(path)
        if direct and ctx.finish:
            click.echo("Warning: ignoring -f (finish) in direct mode", err=True)

        with open_link(ctx) as channel:
            if direct:
                click.echo("Waiting for XSEND on the calculator...")
                result = receive_direct(channel, ctx.settings, progress_bar)
            else:
                server = XModemServer(channel, ctx.settings)
                result = server.get(target.name, progress_bar)
                if result.ok and ctx.finish:
                    server.finish()

        report(result)
        if not overwrite:
            target = next_free_path(target)
        target.write_bytes(result.data)
        click.echo(f"Saved to: {target}")
        print_object_info(result.data)

    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose)


# =============================================================================
# Kermit Commands
# =============================================================================

@main.command()
@click.argument("path", type=click.Path(dir_okay=False), required=False)
@pass_context
def ksend(ctx: Context, path: Optional[str]) -> None:
    """
    Send PATH to the calculator's Kermit server.

    Example:
        hplink ksend GAME
        hplink -f ksend GAME
    """
    path = require_argument(path)
    try:
        data = Path(path).read_bytes()
        with open_link(ctx) as channel:
            sender = KermitSender(channel, ctx.settings, progress_bar)
            result = sender.send(Path(path).name, data, finish=ctx.finish)

        report(result)
        print_object_info(data)

    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose)


@main.command()
@click.argument("path", type=click.Path(dir_okay=False), required=False)
@pass_context
def kget(ctx: Context, path: Optional[str]) -> None:
    """
    Receive PATH over Kermit (not supported; use xget).
    """
    require_argument(path)
    handle_cli_exception(
        UnsupportedOperationError("Kermit receive is not supported; use 'hplink xget'"),
        verbose=ctx.verbose,
    )


# =============================================================================
# Info Command
# =============================================================================

@main.command()
@click.argument("path", type=click.Path(dir_okay=False), required=False)
@pass_context
def info(ctx: Context, path: Optional[str]) -> None:
    """
    Show the checksum, size and ROM revision of the object in PATH.

    Example:
        hplink info GAME
    """
    path = require_argument(path)
    try:
        click.echo(analyze_file(path).summary())
    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose)


# =============================================================================
# XModem Server Commands
# =============================================================================

@main.command()
@pass_context
def mem(ctx: Context) -> None:
    """Show free memory on the calculator."""
    try:
        with open_link(ctx) as channel:
            free = XModemServer(channel, ctx.settings).free_memory()
        click.echo(f"Free memory: {free} bytes")
    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose)


@main.command()
@pass_context
def version(ctx: Context) -> None:
    """Show the XModem server's version."""
    try:
        with open_link(ctx) as channel:
            click.echo(XModemServer(channel, ctx.settings).version())
    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose)


@main.command("ls")
@pass_context
def list_directory(ctx: Context) -> None:
    """List the calculator's current directory."""
    try:
        with open_link(ctx) as channel:
            entries = XModemServer(channel, ctx.settings).list_directory()

        if not entries:
            click.echo("(empty)")
            return
        for entry in entries:
            click.echo(str(entry))
        click.echo(f"{len(entries)} variable(s)")

    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose)


@main.command("exec")
@click.argument("command", required=False)
@pass_context
def execute(ctx: Context, command: Optional[str]) -> None:
    """
    Run COMMAND on the calculator.

    Example:
        hplink exec "'GAME' PURGE"
    """
    command = require_argument(command)
    try:
        with open_link(ctx) as channel:
            XModemServer(channel, ctx.settings).execute(command)
    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose)


@main.command("quit")
@pass_context
def quit_server(ctx: Context) -> None:
    """Stop the calculator's XModem server."""
    try:
        with open_link(ctx) as channel:
            XModemServer(channel, ctx.settings).kill()
    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose)


if __name__ == "__main__":
    main()
