# captain/cli/utils/output.py
"""Output formatting utilities"""

from pathlib import Path
from typing import Dict, List, Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ...api.exceptions import (
    AuthorityMismatchError,
    CaptainError,
    ChunkWriteFailedError,
    InsufficientFundsError,
)
from ...constants import EMOJI_ERROR, EMOJI_SUCCESS, EMOJI_WARNING, LAMPORTS_PER_SOL
from ...models import DeploymentRecord, DeployResult, OperationStatus
from ...utils.file_utils import format_size

console = Console()


def format_deploy_result(result: DeployResult) -> None:
    """Format and display a completed deploy or upgrade"""
    if result.status == OperationStatus.SKIPPED:
        console.print(
            f"[green]{EMOJI_SUCCESS}[/green] {result.program} on {result.network} is "
            f"already up to date ({result.program_address})"
        )
        return

    lines = [
        f"[green]{EMOJI_SUCCESS}[/green] {result.operation.capitalize()} completed successfully!",
        "",
        f"[bold]Program:[/bold] {result.program}",
        f"[bold]Network:[/bold] {result.network}",
        f"[bold]Address:[/bold] {result.program_address}",
        f"[bold]Authority:[/bold] {result.authority}",
        f"[bold]Content hash:[/bold] {result.content_hash}",
    ]
    if result.record is not None and result.record.version:
        lines.append(f"[bold]Version:[/bold] {result.record.version}")
    if result.recovered:
        lines.append("[yellow]Completed an interrupted earlier attempt[/yellow]")
    if result.duration is not None:
        lines.append(f"[dim]Duration: {result.duration:.2f}s[/dim]")

    console.print(Panel("\n".join(lines), title="Deploy Result", border_style="green"))


def format_error(error: Exception, result: Optional[DeployResult] = None) -> None:
    """Display an operation error with what is needed to continue"""
    console.print(f"[red]{EMOJI_ERROR} Error:[/red] {escape(str(error))}")

    if isinstance(error, AuthorityMismatchError):
        console.print(f"  Expected authority: {error.expected}")
        console.print(f"  Supplied authority: {error.supplied}")
    elif isinstance(error, InsufficientFundsError):
        console.print(f"  Required: {error.required / LAMPORTS_PER_SOL:.9f} SOL")
        console.print(f"  Available: {error.available / LAMPORTS_PER_SOL:.9f} SOL")
    elif isinstance(error, ChunkWriteFailedError):
        console.print(f"  Failed after {error.attempts} attempt(s)")

    if result is None or not result.transitions:
        return

    if result.bytes_written is not None and result.total_size:
        console.print(
            f"  Last checkpoint: buffer {result.buffer_address}, "
            f"{result.bytes_written}/{result.total_size} bytes written"
        )
    console.print(f"  Resume with: [cyan]{result.resume_command}[/cyan]")


def format_records_table(records: List[DeploymentRecord],
                         verified: Optional[Dict[str, bool]] = None) -> Table:
    """Create the table shown by `captain status`"""
    table = Table(title="Deployments", box=box.ROUNDED)
    table.add_column("Network", style="cyan")
    table.add_column("Program", style="cyan")
    table.add_column("Address", style="green")
    table.add_column("Version")
    table.add_column("Hash", style="dim")
    table.add_column("Size", style="dim")
    table.add_column("Authority")
    table.add_column("Updated", style="dim")
    if verified is not None:
        table.add_column("On chain")

    for record in records:
        row = [
            record.network,
            record.program,
            record.program_address,
            record.version or "-",
            record.content_hash[:16],
            format_size(record.size),
            record.authority,
            record.updated_at,
        ]
        if verified is not None:
            matches = verified.get(record.key)
            row.append(f"[green]{EMOJI_SUCCESS}[/green]" if matches
                       else f"[red]{EMOJI_ERROR} mismatch[/red]")
        table.add_row(*row)

    return table


def format_program_list(programs: List[Dict[str, str]], build_dir: Path) -> None:
    """Display built program binaries"""
    if not programs:
        console.print(f"[yellow]No programs built in {build_dir}[/yellow]")
        return

    table = Table(title="Programs", box=box.SIMPLE)
    table.add_column("Program", style="cyan")
    table.add_column("Size", style="dim")
    table.add_column("Hash", style="dim")
    table.add_column("Status")

    for program in programs:
        table.add_row(program["name"], program["size"], program["hash"], program["status"])

    console.print(table)


def print_error(message: str, error: Optional[Exception] = None) -> None:
    """Print error message"""
    if error:
        console.print(f"[red]Error:[/red] {message}: {escape(str(error))}")
    else:
        console.print(f"[red]Error:[/red] {message}")


def print_warning(message: str) -> None:
    """Print warning message"""
    console.print(f"[yellow]{EMOJI_WARNING} Warning:[/yellow] {message}")


def print_success(message: str) -> None:
    """Print success message"""
    console.print(f"[green]{EMOJI_SUCCESS}[/green] {message}")
