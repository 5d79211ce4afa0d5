"""Deployment status command"""

import click

from ..decorators import handle_errors, require_project
from ..utils.output import console, format_records_table, print_warning


@click.command()
@click.option('--network', '-n', help='Only show this network')
@click.option('--verify', is_flag=True, help='Compare recorded hashes with on-chain code')
@click.pass_context
@require_project
@handle_errors
def status(ctx, network, verify):
    """Show what is deployed where

    Examples:
        captain status
        captain status --network mainnet --verify
    """
    deployer = ctx.obj.deployer
    records = deployer.status(network)

    if not records:
        console.print("[yellow]No deployments recorded[/yellow]")
        return

    verified = deployer.verify(network) if verify else None
    console.print(format_records_table(records, verified))

    if verified is not None and not all(verified.values()):
        print_warning("Some programs do not match their deployment records")
        ctx.exit(1)
