"""Build command"""

import sys

import click

from ..decorators import handle_errors, require_project
from ..utils.output import print_error, print_success
from ...core.build_runner import run_build


@click.command()
@click.option('--program', '-p', help='Build only this program')
@click.pass_context
@require_project
@handle_errors
def build(ctx, program):
    """Build programs with the Solana toolchain

    Runs `anchor build` in Anchor workspaces and `cargo build-sbf`
    otherwise. The toolchain's exit code is passed through.
    """
    project_root = ctx.obj.deployer.resolver.project_root
    code = run_build(project_root, program)
    if code != 0:
        print_error(f"Build failed with exit code {code}")
        sys.exit(code)
    print_success("Build finished")
