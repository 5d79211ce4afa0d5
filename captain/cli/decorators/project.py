"""Project context decorator for CLI commands"""

import sys
from functools import wraps
from typing import Callable

import click

from ..utils.output import console, format_error
from ...api.deployer import Deployer
from ...api.exceptions import CaptainError
from ...constants import EMOJI_ERROR, ExitCode


def require_project(func: Callable) -> Callable:
    """Decorator that ensures command runs in a valid project context

    Loads the manifest (CAPTAIN_MANIFEST or a search upwards from the
    current directory) and puts a Deployer on the click context object.

    Args:
        func: Command function to decorate

    Returns:
        Decorated function
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        ctx = click.get_current_context()

        try:
            deployer = Deployer()
        except CaptainError as e:
            console.print(f"[red]{EMOJI_ERROR} Failed to load project:[/red] {e}")
            sys.exit(e.exit_code)

        ctx.obj.deployer = deployer
        if ctx.obj.debug:
            console.print(f"[dim]Project root: {deployer.resolver.project_root}[/dim]")

        return func(*args, **kwargs)

    return wrapper


def handle_errors(func: Callable) -> Callable:
    """Decorator mapping captain errors to messages and exit codes

    Args:
        func: Command function to decorate

    Returns:
        Decorated function
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        ctx = click.get_current_context()
        try:
            return func(*args, **kwargs)
        except CaptainError as e:
            format_error(e, _last_result(ctx))
            sys.exit(e.exit_code)
        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user[/yellow]")
            result = _last_result(ctx)
            if result is not None:
                console.print(f"  Resume with: [cyan]{result.resume_command}[/cyan]")
            sys.exit(ExitCode.INTERRUPTED)

    return wrapper


def _last_result(ctx):
    deployer = getattr(ctx.obj, "deployer", None)
    if deployer is None:
        return None
    return deployer.last_result
