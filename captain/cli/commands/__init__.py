# captain/cli/commands/__init__.py
"""CLI commands"""

from . import init
from . import build
from . import programs
from . import deploy
from . import status

__all__ = [
    "init",
    "build",
    "programs",
    "deploy",
    "status",
]
