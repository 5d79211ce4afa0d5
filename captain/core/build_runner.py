"""Invoke the external build toolchain"""

import logging
import subprocess
from pathlib import Path
from typing import List, Optional

from ..api.exceptions import ConfigError

logger = logging.getLogger(__name__)


def build_command(project_root: Path, program: Optional[str] = None) -> List[str]:
    """Command that builds the project's programs

    Anchor workspaces are built with `anchor build`, plain cargo workspaces
    with `cargo build-sbf`.
    """
    if (project_root / "Anchor.toml").exists():
        command = ["anchor", "build"]
        if program:
            command += ["-p", program]
    else:
        command = ["cargo", "build-sbf"]
        if program:
            command += ["--manifest-path", str(project_root / "programs" / program / "Cargo.toml")]
    return command


def run_build(project_root: Path, program: Optional[str] = None) -> int:
    """
    Run the build toolchain in the project root

    Args:
        project_root: Project root directory
        program: Build only this program

    Returns:
        Exit code of the toolchain

    Raises:
        ConfigError: If the toolchain is not installed
    """
    command = build_command(project_root, program)
    logger.info(f"Running {' '.join(command)}")
    try:
        result = subprocess.run(command, cwd=project_root)
    except FileNotFoundError:
        raise ConfigError(f"Build toolchain not found: {command[0]} is not installed")
    return result.returncode
