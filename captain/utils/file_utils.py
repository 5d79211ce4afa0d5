# captain/utils/file_utils.py
"""File operation utilities"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Union


def format_size(size: int) -> str:
    """
    Format file size in human-readable format

    Args:
        size: Size in bytes

    Returns:
        Formatted size string
    """
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if size < 1024.0:
            return f"{size:.2f} {unit}"
        size /= 1024.0
    return f"{size:.2f} PB"


def ensure_parent_dir(file_path: Path) -> Path:
    """
    Ensure parent directory exists

    Args:
        file_path: File path

    Returns:
        Parent directory path
    """
    parent = file_path.parent
    parent.mkdir(parents=True, exist_ok=True)
    return parent


def atomic_write(file_path: Path,
                 content: Union[str, bytes],
                 mode: str = 'w') -> None:
    """
    Write file atomically

    The content is written to a temporary file in the target directory and
    renamed over the target, so readers see either the old or the new file.

    Args:
        file_path: Target file path
        content: Content to write
        mode: Write mode
    """
    ensure_parent_dir(file_path)
    temp_fd, temp_path = tempfile.mkstemp(dir=file_path.parent, prefix=f".{file_path.name}.")

    try:
        with os.fdopen(temp_fd, mode) as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        # Atomic rename
        os.replace(temp_path, file_path)

    except BaseException:
        # Clean up temp file on error
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


def atomic_write_json(file_path: Path, data: Dict[str, Any]) -> None:
    """Write a JSON document atomically, pretty-printed with sorted keys"""
    atomic_write(file_path, json.dumps(data, indent=2, sort_keys=True) + "\n")


def read_json(file_path: Path) -> Dict[str, Any]:
    """Read a JSON document"""
    with open(file_path, 'r', encoding='utf-8') as f:
        return json.load(f)


def safe_remove(path: Path) -> bool:
    """
    Remove a file if it exists

    Args:
        path: Path to remove

    Returns:
        True if a file was removed
    """
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
