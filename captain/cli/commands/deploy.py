"""Deploy and upgrade commands"""

import click

from ..decorators import handle_errors, require_project
from ..utils.output import console, format_deploy_result
from ..utils.progress import buffer_progress
from ...constants import EMOJI_ROCKET


def _run(ctx, operation, program, network, version, artifact, authority_keypair=None):
    deployer = ctx.obj.deployer
    if not ctx.obj.quiet:
        console.print(f"\n{EMOJI_ROCKET} {operation.capitalize()} [bold]{program}[/bold] "
                      f"to [cyan]{network}[/cyan]...")

    with buffer_progress(program, console=console, disable=ctx.obj.quiet) as (_, callback):
        if operation == "deploy":
            result = deployer.deploy(program, network, version=version,
                                     artifact_path=artifact, progress=callback)
        else:
            result = deployer.upgrade(program, network, version=version,
                                      artifact_path=artifact,
                                      authority_keypair=authority_keypair,
                                      progress=callback)

    if not ctx.obj.quiet:
        format_deploy_result(result)


@click.command()
@click.option('--program', '-p', required=True, help='Program name')
@click.option('--network', '-n', required=True, help='Network name from the manifest')
@click.option('--version', 'version', help='Version label (default: from Cargo.toml)')
@click.option('--artifact', type=click.Path(dir_okay=False),
              help='Program binary (default: <build_output>/<program>.so)')
@click.pass_context
@require_project
@handle_errors
def deploy(ctx, program, network, version, artifact):
    """Deploy a program to a network for the first time

    Running the command again with an unchanged binary does nothing. An
    interrupted deploy resumes from its last written chunk.

    Examples:
        captain deploy --program counter --network devnet
        captain deploy -p counter -n devnet --version 1.2.0
    """
    _run(ctx, "deploy", program, network, version, artifact)


@click.command()
@click.option('--program', '-p', required=True, help='Program name')
@click.option('--network', '-n', required=True, help='Network name from the manifest')
@click.option('--version', 'version', help='Version label (default: from Cargo.toml)')
@click.option('--artifact', type=click.Path(dir_okay=False),
              help='Program binary (default: <build_output>/<program>.so)')
@click.option('--authority-keypair', type=click.Path(dir_okay=False),
              envvar='UPGRADE_AUTHORITY_KEYPAIR',
              help='Keypair signing the upgrade instead of the configured authority')
@click.pass_context
@require_project
@handle_errors
def upgrade(ctx, program, network, version, artifact, authority_keypair):
    """Upgrade a deployed program in place

    The program address never changes. The upgrade is signed by the
    recorded upgrade authority; the deployer key is never used for it.

    Examples:
        captain upgrade --program counter --network mainnet
        captain upgrade -p counter -n mainnet --authority-keypair ~/ledger.json
    """
    _run(ctx, "upgrade", program, network, version, artifact, authority_keypair)
