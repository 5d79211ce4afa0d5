"""List built programs"""

import click

from ..decorators import handle_errors, require_project
from ..utils.output import format_program_list
from ...core.artifact_versioner import content_hash
from ...utils.async_utils import run_async
from ...utils.file_utils import format_size


@click.command()
@click.option('--network', '-n', help='Compare against the deployment records of a network')
@click.pass_context
@require_project
@handle_errors
def programs(ctx, network):
    """List program binaries in the build output directory

    With --network, each program is marked as new, deployed (identical
    content) or changed.
    """
    deployer = ctx.obj.deployer
    build_dir = deployer.path_resolver.get_build_output_dir()
    if network:
        deployer.resolver.resolve_network(network)

    rows = []
    binaries = sorted(build_dir.glob("*.so")) if build_dir.is_dir() else []
    for binary in binaries:
        digest = content_hash(binary.read_bytes())
        status = "-"
        if network:
            record = run_async(deployer.ledger.load(binary.stem, network))
            if record is None:
                status = "new"
            elif record.content_hash == digest:
                status = f"deployed {record.version or ''}".strip()
            else:
                status = "[yellow]changed[/yellow]"
        rows.append({
            "name": binary.stem,
            "size": format_size(binary.stat().st_size),
            "hash": digest[:16],
            "status": status,
        })

    format_program_list(rows, deployer.path_resolver.make_relative(build_dir))
