# captain/cli/decorators/__init__.py
"""CLI decorators"""

from .project import require_project, handle_errors

__all__ = [
    'require_project',
    'handle_errors',
]
