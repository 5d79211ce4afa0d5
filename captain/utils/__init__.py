# captain/utils/__init__.py
"""Utility functions for captain"""

from .file_utils import (
    format_size,
    ensure_parent_dir,
    atomic_write,
    atomic_write_json,
    read_json,
    safe_remove,
)

from .hash_utils import (
    calculate_content_hash,
)

from .async_utils import (
    run_async,
    retry_async,
    run_to_completion,
    raise_if_cancelling,
)

__all__ = [
    # File utilities
    'format_size',
    'ensure_parent_dir',
    'atomic_write',
    'atomic_write_json',
    'read_json',
    'safe_remove',

    # Hash utilities
    'calculate_content_hash',

    # Async utilities
    'run_async',
    'retry_async',
    'run_to_completion',
    'raise_if_cancelling',
]
