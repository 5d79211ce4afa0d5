# captain/cli/main.py
"""Main CLI entry point for captain"""

import logging
import os
import sys
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler

from ..__version__ import __version__
from ..api.deployer import Deployer
from ..constants import APP_NAME, ENV_LOG_LEVEL, LOG_FORMAT, ExitCode

# Import all commands
from .commands import (
    init,
    build,
    programs,
    deploy,
    status,
)

console = Console()


def _log_level(verbose: bool, debug: bool, quiet: bool) -> int:
    """Pick the root log level from the global flags and CAPTAIN_LOG_LEVEL"""
    env_level = os.environ.get(ENV_LOG_LEVEL)
    if env_level:
        level = logging.getLevelName(env_level.upper())
        if isinstance(level, int):
            return level
        console.print(f"[yellow]Ignoring unknown {ENV_LOG_LEVEL}={env_level}[/yellow]")

    if quiet:
        return logging.ERROR
    if debug:
        return logging.DEBUG
    if verbose:
        return logging.INFO
    return logging.WARNING


def setup_logging(verbose: bool = False, debug: bool = False, quiet: bool = False) -> None:
    """Route captain's loggers through rich

    Timestamps and source paths are only shown with --debug. HTTP client
    chatter stays at WARNING even when captain itself logs at DEBUG.
    """
    level = _log_level(verbose, debug, quiet)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[
            RichHandler(
                console=console,
                show_time=debug,
                show_path=debug,
                rich_tracebacks=True,
                tracebacks_suppress=[click]
            )
        ]
    )
    logging.getLogger(APP_NAME).setLevel(level)

    for noisy in ("asyncio", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


class Context:
    """CLI context object

    `deployer` is set by commands that need a project.
    """

    def __init__(self):
        self.verbose: bool = False
        self.debug: bool = False
        self.quiet: bool = False
        self.deployer: Optional[Deployer] = None


@click.group(name=APP_NAME)
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('-d', '--debug', is_flag=True, help='Enable debug output')
@click.option('-q', '--quiet', is_flag=True, help='Suppress all output except errors')
@click.version_option(__version__, prog_name=APP_NAME)
@click.pass_context
def cli(ctx, verbose, debug, quiet):
    """Captain - deploy and upgrade Solana programs

    Captain keeps one deployment record per program and network, writes
    program binaries through resumable buffers, and never lets the deployer
    key stand in for the upgrade authority.
    """
    setup_logging(verbose=verbose, debug=debug, quiet=quiet)

    ctx.obj = Context()
    ctx.obj.verbose = verbose
    ctx.obj.debug = debug
    ctx.obj.quiet = quiet


# Register commands
cli.add_command(init.init)
cli.add_command(build.build)
cli.add_command(programs.programs)
cli.add_command(deploy.deploy)
cli.add_command(deploy.upgrade)
cli.add_command(status.status)


def main():
    """Main entry point for the CLI application

    This function handles:
    - Keyboard interrupts
    - Unexpected exceptions with proper error display
    """
    try:
        cli(prog_name=APP_NAME)

    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(ExitCode.INTERRUPTED)

    except Exception as e:
        console.print(f"[red]Unexpected error: {e}[/red]")
        if '--debug' in sys.argv or '-d' in sys.argv:
            console.print_exception()
        sys.exit(ExitCode.FAILURE)


if __name__ == "__main__":
    main()
