"""Initialize command for creating new captain projects"""

import sys
from pathlib import Path

import click

from ..utils.output import console
from ...api.exceptions import ConfigError
from ...constants import EMOJI_ROCKET, EMOJI_WARNING
from ...core.project_manager import ProjectManager


@click.command()
@click.argument('path', required=False, default='.')
@click.option('--name', '-n', help='Project name')
@click.option('--force', '-f', is_flag=True, help='Overwrite an existing manifest')
@click.pass_context
def init(ctx, path, name, force):
    """Initialize a new captain project

    Writes .captain.yaml with the mainnet, devnet, testnet and localnet
    clusters and no program bindings. Keys are never generated; the
    commands that create them are printed instead.

    Examples:
        captain init
        captain init ./my-programs --name "My Programs"
    """
    project_path = Path(path).resolve()

    if not ctx.obj.quiet:
        console.print(f"\n{EMOJI_ROCKET} Initializing captain project...")

    try:
        ProjectManager(console=console).init_project(project_path, name, force=force)
    except ConfigError as e:
        console.print(f"{EMOJI_WARNING} {e}")
        sys.exit(e.exit_code)
